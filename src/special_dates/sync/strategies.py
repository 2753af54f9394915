"""Import strategies for calendar synchronization."""

import re
from datetime import datetime
from typing import Any, Optional, Protocol

from ..config import DEFAULT_KEYWORDS, ImportConfig
from ..core.event_store import validate_draft
from ..models.candidate import CandidateEvent
from ..models.special_date import (
    Category,
    OriginalDate,
    SourceOrigin,
    SpecialDate,
    SpecialDateDraft,
)
from ..utils.date_utils import to_local_date

# "John's Birthday", "Birthday: John", "Ayşe'nin Doğum Günü", ...
_NAME_NOISE = [
    re.compile(r"['’]s\s+birthday\b", re.IGNORECASE),
    re.compile(r"^\s*birthday\s*(of|:|-)?\s*", re.IGNORECASE),
    re.compile(r"\s*\bbirthday\b", re.IGNORECASE),
    re.compile(r"['’]\w*\s+doğum\s+günü\b", re.IGNORECASE),
    re.compile(r"\s*\bdoğum\s+günü\b", re.IGNORECASE),
]

# Keyword categories tried after birthday, in this order
_OTHER_CATEGORIES = (Category.ANNIVERSARY, Category.WEDDING, Category.GRADUATION)


def contains_keyword(text: str, keywords: list[str]) -> bool:
    lowered = text.lower()
    return any(word and word in lowered for word in keywords)


def extract_person_name(title: str) -> str:
    """
    Reduce a birthday title to the person's name.

    Falls back to the stripped title when nothing is left.
    """
    name = title
    for pattern in _NAME_NOISE:
        name = pattern.sub("", name)
    name = name.strip(" -:")
    return name or title.strip()


class ImportStrategy(Protocol):
    """Protocol for import strategies."""

    def classify(self, candidate: CandidateEvent) -> Optional[Category]:
        """
        Decide whether and as what a candidate is imported.

        Args:
            candidate: Event fetched from the provider

        Returns:
            Category to import as, or None to skip the candidate
        """
        ...

    def resolve_conflict(
        self,
        existing: SpecialDate,
        incoming: SpecialDateDraft,
    ) -> dict[str, Any]:
        """
        Merge an upstream change into an already imported record.

        Args:
            existing: Record currently in the store
            incoming: Draft mapped from the fresh candidate

        Returns:
            Patch for EventStore.update
        """
        ...


class KeywordStrategy:
    """Shared keyword classification and upstream-wins merge policy."""

    def __init__(
        self,
        keywords: Optional[dict[Category, list[str]]] = None,
        skip_titles: Optional[list[str]] = None,
    ):
        self.keywords = keywords or {c: list(w) for c, w in DEFAULT_KEYWORDS.items()}
        self.skip_titles = [t.lower().strip() for t in skip_titles or []]

    def is_birthday(self, candidate: CandidateEvent) -> bool:
        """Birthday-type check: provider flag, then title and calendar label."""
        if candidate.is_birthday_hint:
            return True
        words = self.keywords.get(Category.BIRTHDAY, [])
        return contains_keyword(candidate.title, words) or contains_keyword(
            candidate.calendar_label, words
        )

    def _skipped(self, candidate: CandidateEvent) -> bool:
        return candidate.title.lower().strip() in self.skip_titles

    def resolve_conflict(
        self,
        existing: SpecialDate,
        incoming: SpecialDateDraft,
    ) -> dict[str, Any]:
        """Upstream name, category and month/day win; local year, icon and notes stay."""
        original_date = incoming.original_date
        if original_date.year is None and existing.original_date.year is not None:
            original_date = OriginalDate(
                month=original_date.month,
                day=original_date.day,
                year=existing.original_date.year,
            )
        return {
            "subject_name": incoming.subject_name,
            "category": incoming.category,
            "custom_label": incoming.custom_label,
            "original_date": original_date,
            "calendar_label": incoming.calendar_label,
            "icon": existing.icon,
            "notes": existing.notes if existing.notes else incoming.notes,
        }


class BirthdayOnlyStrategy(KeywordStrategy):
    """Import birthday-type candidates only."""

    def classify(self, candidate: CandidateEvent) -> Optional[Category]:
        if self._skipped(candidate) or not self.is_birthday(candidate):
            return None
        return Category.BIRTHDAY


class AllOccasionsStrategy(KeywordStrategy):
    """Import every candidate; unrecognized ones become custom occasions."""

    def classify(self, candidate: CandidateEvent) -> Optional[Category]:
        if self._skipped(candidate):
            return None
        if self.is_birthday(candidate):
            return Category.BIRTHDAY
        for category in _OTHER_CATEGORIES:
            words = self.keywords.get(category, [])
            if contains_keyword(candidate.title, words) or contains_keyword(
                candidate.calendar_label, words
            ):
                return category
        return Category.CUSTOM


def build_strategy(import_config: ImportConfig) -> KeywordStrategy:
    """Create the strategy named in the import configuration."""
    if import_config.strategy == "all":
        return AllOccasionsStrategy(import_config.keywords, import_config.skip_titles)
    return BirthdayOnlyStrategy(import_config.keywords, import_config.skip_titles)


def candidate_to_draft(
    candidate: CandidateEvent,
    owner_id: str,
    category: Category,
    tz_name: str = "UTC",
) -> SpecialDateDraft:
    """
    Map a provider event to an imported record draft.

    All-day events keep their calendar date; timed events are placed on the
    calendar day of ``tz_name``.

    Raises:
        ValidationError: If the event cannot form a valid record
    """
    start = candidate.start_date
    if candidate.is_all_day and isinstance(start, datetime):
        day = start.date()
    else:
        day = to_local_date(start, tz_name)

    title = candidate.title.strip()
    if category == Category.BIRTHDAY:
        subject_name = extract_person_name(title)
    else:
        subject_name = title

    return validate_draft(
        {
            "owner_id": owner_id,
            "subject_name": subject_name,
            "category": category,
            "custom_label": title if category == Category.CUSTOM else None,
            "original_date": {"month": day.month, "day": day.day},
            "source_origin": SourceOrigin.IMPORTED_EXTERNAL,
            "external_id": candidate.external_id,
            "calendar_label": candidate.calendar_label or None,
            "notes": candidate.notes,
        }
    )
