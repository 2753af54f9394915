"""Abstract base class for persistence backends."""

from abc import ABC, abstractmethod
from typing import Optional

from ..models.special_date import SpecialDate
from ..models.sync_status import SyncStatus


class PersistenceStore(ABC):
    """Durable storage for occasion records and sync status."""

    @abstractmethod
    def save_record(self, record: SpecialDate) -> None:
        """
        Create or replace a record by id, atomically.

        Args:
            record: Record to store

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    def load_record(self, record_id: str) -> Optional[SpecialDate]:
        """
        Load a record by id, active or not.

        Args:
            record_id: Record identifier

        Returns:
            The record, or None if unknown
        """

    @abstractmethod
    def load_records(self, owner_id: str) -> list[SpecialDate]:
        """
        Load every record of an owner, including inactive ones.

        Args:
            owner_id: Owner identifier

        Returns:
            List of records in no particular order
        """

    @abstractmethod
    def save_sync_status(self, status: SyncStatus) -> None:
        """Create or replace the owner's sync status."""

    @abstractmethod
    def load_sync_status(self, owner_id: str) -> Optional[SyncStatus]:
        """Load the owner's sync status, or None if never synced."""
