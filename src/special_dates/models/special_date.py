"""Occasion record data model."""

import calendar
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class Category(str, Enum):
    """Occasion category."""

    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    GRADUATION = "graduation"
    WEDDING = "wedding"
    CUSTOM = "custom"


class SourceOrigin(str, Enum):
    """Where a record came from."""

    MANUAL = "manual"
    IMPORTED_EXTERNAL = "imported_external"


class OriginalDate(BaseModel):
    """Recurring month/day with an optional known year."""

    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    year: Optional[int] = Field(default=None, ge=1, le=9999)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_calendar_day(self) -> "OriginalDate":
        # 2000 is a leap year, so Feb 29 is accepted as a recurring date
        if self.day > calendar.monthrange(2000, self.month)[1]:
            raise ValueError(f"invalid day {self.day} for month {self.month}")
        if self.year is not None:
            try:
                date(self.year, self.month, self.day)
            except ValueError as e:
                raise ValueError(
                    f"{self.year}-{self.month:02d}-{self.day:02d} is not a real date"
                ) from e
        return self

    @property
    def is_leap_day(self) -> bool:
        return self.month == 2 and self.day == 29

    def __str__(self) -> str:
        if self.year is not None:
            return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
        return f"--{self.month:02d}-{self.day:02d}"


class SpecialDateDraft(BaseModel):
    """Input shape for creating an occasion record."""

    owner_id: str = Field(min_length=1)
    subject_name: str = ""
    category: Category
    custom_label: Optional[str] = None
    original_date: OriginalDate
    icon: Optional[str] = None  # Falls back to the category icon for display
    source_origin: SourceOrigin = SourceOrigin.MANUAL
    external_id: Optional[str] = None
    calendar_label: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "SpecialDateDraft":
        label = (self.custom_label or "").strip()
        if self.category == Category.CUSTOM:
            if not label:
                raise ValueError("custom occasions require a non-empty custom_label")
        else:
            # Only custom occasions carry a label
            self.custom_label = None
            label = ""

        if not self.subject_name.strip() and not label:
            raise ValueError("subject_name and custom_label cannot both be empty")

        if self.source_origin == SourceOrigin.IMPORTED_EXTERNAL:
            if not (self.external_id or "").strip():
                raise ValueError("imported records require an external_id")
        elif self.external_id is not None:
            raise ValueError("only imported records carry an external_id")
        return self

    @property
    def display_name(self) -> str:
        """Name shown for the occasion."""
        return self.subject_name.strip() or (self.custom_label or "").strip()


class SpecialDate(SpecialDateDraft):
    """Canonical stored occasion record."""

    id: str
    created_at: datetime
    updated_at: datetime
    active: bool = True

    def draft_fields(self) -> dict:
        """Field values without identity, timestamps and the active flag."""
        return self.model_dump(exclude={"id", "created_at", "updated_at", "active"})


# Fields an update may change; identity and audit fields are store-managed
MUTABLE_FIELDS = frozenset(
    {
        "subject_name",
        "category",
        "custom_label",
        "original_date",
        "icon",
        "calendar_label",
        "notes",
    }
)
