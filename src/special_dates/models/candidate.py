"""Provider-side event models."""

from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, model_validator


class CandidateEvent(BaseModel):
    """Event as fetched from an external calendar provider."""

    external_id: str
    title: str = ""
    start_date: Union[datetime, date]
    is_all_day: bool = True
    calendar_label: str = ""
    is_birthday_hint: Optional[bool] = None  # Provider-native category flag, when known
    notes: Optional[str] = None

    model_config = {"frozen": True}


class DateRange(BaseModel):
    """Half-open fetch window [start, end)."""

    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end <= self.start:
            raise ValueError("date range end must be after start")
        return self
