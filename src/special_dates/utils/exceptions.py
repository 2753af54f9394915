"""Custom exceptions for the Special Dates application."""

from typing import Optional


class SpecialDatesError(Exception):
    """Base exception for special dates errors."""


class ValidationError(SpecialDatesError):
    """Raised when an occasion record is malformed."""


class NotFoundError(SpecialDatesError):
    """Raised when an operation targets a missing or inactive record."""


class StorageError(SpecialDatesError):
    """Raised when the persistence layer cannot read or write."""


class ConfigurationError(SpecialDatesError):
    """Raised when configuration is invalid."""


class AuthenticationError(SpecialDatesError):
    """Raised when authentication fails."""


class SyncStateError(SpecialDatesError):
    """Raised on an illegal sync state transition."""


class SyncAccessError(SpecialDatesError):
    """Raised when calendar access is denied or restricted."""


class SyncProviderError(SpecialDatesError):
    """Raised when fetching from the calendar provider fails."""


class PartialSyncError(SpecialDatesError):
    """Some candidates of a sync pass failed to map or merge."""

    def __init__(self, failures: dict[str, str], total: Optional[int] = None):
        """
        Args:
            failures: Mapping of external id to failure message
            total: Number of candidates processed in the pass
        """
        self.failures = dict(failures)
        self.total = total
        super().__init__(self.summary())

    def summary(self) -> str:
        """One-line summary suitable for SyncStatus.last_error."""
        count = len(self.failures)
        if self.total is not None:
            head = f"{count} of {self.total} candidate(s) failed"
        else:
            head = f"{count} candidate(s) failed"
        first_id = next(iter(self.failures), None)
        if first_id is None:
            return head
        return f"{head}; first: {first_id}: {self.failures[first_id]}"
