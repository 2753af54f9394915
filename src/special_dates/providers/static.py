"""In-memory provider implementations for tests and offline use."""

import asyncio
import logging
from typing import Optional

from ..models.candidate import CandidateEvent, DateRange
from ..models.sync_status import PermissionStatus
from ..utils.exceptions import SpecialDatesError, SyncProviderError
from .base import CalendarProvider, PermissionProvider

logger = logging.getLogger(__name__)


class StaticPermissionProvider(PermissionProvider):
    """Permission subsystem with a scripted answer."""

    def __init__(
        self,
        status: PermissionStatus = PermissionStatus.NOT_DETERMINED,
        grant: bool = True,
    ):
        """
        Args:
            status: Status reported before any request
            grant: Answer given when access is requested
        """
        self.status = status
        self.grant = grant
        self.request_count = 0

    def get_permission_status(self) -> PermissionStatus:
        return self.status

    async def request_access(self) -> bool:
        self.request_count += 1
        self.status = PermissionStatus.AUTHORIZED if self.grant else PermissionStatus.DENIED
        return self.grant


class StaticCalendarProvider(CalendarProvider):
    """Serves a fixed list of events."""

    def __init__(
        self,
        events: Optional[list[CandidateEvent]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        """
        Args:
            events: Events returned by every fetch
            delay: Seconds to wait before answering
            error: Exception raised instead of answering
        """
        self.events = list(events or [])
        self.delay = delay
        self.error = error
        self.fetch_count = 0
        self.started = asyncio.Event()

    async def fetch_events(self, date_range: DateRange) -> list[CandidateEvent]:
        self.fetch_count += 1
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            if isinstance(self.error, SpecialDatesError):
                raise self.error
            raise SyncProviderError(f"Static provider failure: {self.error}") from self.error
        logger.debug(f"Static provider returning {len(self.events)} event(s)")
        return list(self.events)
