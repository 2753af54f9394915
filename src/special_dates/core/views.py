"""Day, week, month and year groupings over the event store."""

import calendar
import logging
from collections import Counter
from datetime import date, timedelta
from typing import Iterable

from ..models.occurrence import MonthCell, OccurrenceView, TodaySummary
from ..models.special_date import SpecialDate
from ..utils.date_utils import week_bounds
from ..utils.exceptions import ValidationError
from .event_store import EventStore
from .occurrence import in_day, in_month, in_week, next_occurrence, occurrence_in_year

logger = logging.getLogger(__name__)

GRID_CELLS = 42  # 6 weeks x 7 days


def _view_order(view: OccurrenceView) -> tuple:
    return (view.days_until, view.subject_name.casefold(), view.subject_name, view.record_id)


def _sorted_views(views: Iterable[OccurrenceView]) -> list[OccurrenceView]:
    return sorted(views, key=_view_order)


class ViewAggregator:
    """
    Read-only queries for the presentation layer.

    Nothing is cached; each call recomputes from the store and the reference
    date it is given.
    """

    def __init__(self, store: EventStore):
        self.store = store

    def today(self, owner_id: str, as_of: date) -> TodaySummary:
        """
        Occasions falling on ``as_of``, with counts per category.

        Args:
            owner_id: Owner identifier
            as_of: Reference date

        Returns:
            TodaySummary sorted by name
        """
        views = [
            next_occurrence(record, as_of)
            for record in self.store.list(owner_id)
            if in_day(record, as_of)
        ]
        views = _sorted_views(views)
        counts = Counter(view.category for view in views)
        return TodaySummary(occasions=views, counts_by_category=dict(counts))

    def upcoming(self, owner_id: str, as_of: date, within_days: int) -> list[OccurrenceView]:
        """
        Occasions within ``within_days`` of ``as_of`` (today included).

        Returns:
            Views ascending by days_until, ties broken by name
        """
        if within_days < 0:
            return []
        views = (next_occurrence(record, as_of) for record in self.store.list(owner_id))
        return _sorted_views(v for v in views if v.days_until <= within_days)

    def day(self, owner_id: str, day: date) -> list[OccurrenceView]:
        """Occasions falling on a given day."""
        return _sorted_views(
            next_occurrence(record, day)
            for record in self.store.list(owner_id)
            if in_day(record, day)
        )

    def week(self, owner_id: str, as_of: date) -> list[OccurrenceView]:
        """
        Occasions in the Monday-first week containing ``as_of``.

        days_until is counted from the week's Monday.
        """
        start, end = week_bounds(as_of)
        return _sorted_views(
            next_occurrence(record, start)
            for record in self.store.list(owner_id)
            if in_week(record, start, end)
        )

    def month_grid(self, owner_id: str, year: int, month: int) -> list[MonthCell]:
        """
        Monday-first 6x7 grid of a month.

        Args:
            owner_id: Owner identifier
            year: Calendar year
            month: Month 1-12

        Returns:
            42 cells; cells outside the month are empty

        Raises:
            ValidationError: If month is not 1-12
        """
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        by_day: dict[date, list[SpecialDate]] = {}
        for record in self.store.list(owner_id):
            if in_month(record, year, month):
                by_day.setdefault(occurrence_in_year(record.original_date, year), []).append(record)

        first = date(year, month, 1)
        days_in_month = calendar.monthrange(year, month)[1]
        leading = first.weekday()  # Monday == 0

        cells = []
        for index in range(GRID_CELLS):
            offset = index - leading
            if 0 <= offset < days_in_month:
                cell_day = first + timedelta(days=offset)
                records = sorted(
                    by_day.get(cell_day, []),
                    key=lambda r: (r.display_name.casefold(), r.id),
                )
                cells.append(MonthCell(day=cell_day, records=records))
            else:
                cells.append(MonthCell())
        return cells

    def year_overview(self, owner_id: str, year: int) -> dict[int, bool]:
        """Whether each month 1-12 of ``year`` has any occasion."""
        records = self.store.list(owner_id)
        return {
            month: any(in_month(record, year, month) for record in records)
            for month in range(1, 13)
        }

    def search(self, owner_id: str, query: str) -> list[SpecialDate]:
        """
        Case-insensitive substring search over names and custom labels.

        An empty query matches nothing.
        """
        needle = query.strip().casefold()
        if not needle:
            return []
        matches = [
            record
            for record in self.store.list(owner_id)
            if needle in record.subject_name.casefold()
            or needle in (record.custom_label or "").casefold()
        ]
        logger.debug(f"Search '{query}' matched {len(matches)} record(s)")
        return sorted(matches, key=lambda r: (r.display_name.casefold(), r.id))
