"""Derived view models. Never persisted."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from .special_date import Category, SpecialDate


class OccurrenceView(BaseModel):
    """Next occurrence of an occasion relative to a reference date."""

    record_id: str
    subject_name: str
    icon: str
    category: Category
    next_occurrence_date: date
    days_until: int = Field(ge=0)
    attained_age: Optional[int] = None

    model_config = {"frozen": True}


class TodaySummary(BaseModel):
    """Occasions falling on the reference date."""

    occasions: list[OccurrenceView] = Field(default_factory=list)
    counts_by_category: dict[Category, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.occasions)


class MonthCell(BaseModel):
    """One cell of a 6x7 Monday-first month grid."""

    day: Optional[date] = None  # None for cells outside the month
    records: list[SpecialDate] = Field(default_factory=list)

    @property
    def in_month(self) -> bool:
        return self.day is not None

    @property
    def has_events(self) -> bool:
        return bool(self.records)
