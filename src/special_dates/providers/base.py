"""Abstract base classes for the external calendar integration."""

from abc import ABC, abstractmethod

from ..models.candidate import CandidateEvent, DateRange
from ..models.sync_status import PermissionStatus


class PermissionProvider(ABC):
    """Out-of-band calendar permission subsystem."""

    @abstractmethod
    def get_permission_status(self) -> PermissionStatus:
        """
        Current permission without prompting the user.

        Returns:
            PermissionStatus
        """

    @abstractmethod
    async def request_access(self) -> bool:
        """
        Ask the user for calendar access.

        Returns:
            True if access was granted, False if refused

        Raises:
            SyncAccessError: If access is restricted by policy
        """


class CalendarProvider(ABC):
    """External calendar that occasions are imported from."""

    @abstractmethod
    async def fetch_events(self, date_range: DateRange) -> list[CandidateEvent]:
        """
        Fetch every event in the window.

        Args:
            date_range: Fetch window

        Returns:
            List of candidate events

        Raises:
            SyncProviderError: If the fetch fails
            SyncAccessError: If the provider rejects the credentials
        """
