"""Canonical store of occasion records and per-owner sync status."""

import logging
import threading
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..models.special_date import (
    MUTABLE_FIELDS,
    Category,
    SourceOrigin,
    SpecialDate,
    SpecialDateDraft,
)
from ..models.sync_status import SyncStatus
from ..storage.base import PersistenceStore
from ..utils.date_utils import utc_now
from ..utils.exceptions import NotFoundError, ValidationError
from .occurrence import in_month

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordFilter:
    """Optional criteria for listing records. Unset fields match anything."""

    category: Optional[Category] = None
    source_origin: Optional[SourceOrigin] = None
    month: Optional[int] = None
    year: Optional[int] = None  # Year used to place Feb 29 when filtering by month

    def matches(self, record: SpecialDate) -> bool:
        if self.category is not None and record.category != self.category:
            return False
        if self.source_origin is not None and record.source_origin != self.source_origin:
            return False
        if self.month is not None:
            if self.year is not None:
                return in_month(record, self.year, self.month)
            return record.original_date.month == self.month
        return True


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def validate_draft(data: Union[SpecialDateDraft, Mapping[str, Any]]) -> SpecialDateDraft:
    """
    Validate creation input.

    Args:
        data: Draft model or plain mapping

    Returns:
        Validated draft

    Raises:
        ValidationError: If the input breaks a record invariant
    """
    if isinstance(data, SpecialDateDraft):
        data = data.model_dump()
    try:
        return SpecialDateDraft.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e


class EventStore:
    """
    Owns occasion records and sync status.

    Writes are serialized per owner with one re-entrant lock each, so a sync
    merge and a manual edit of the same owner never interleave. Reads take no
    lock and get copies of the persisted state.
    """

    def __init__(
        self,
        persistence: PersistenceStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the store.

        Args:
            persistence: Storage backend
            clock: Source of the current UTC time
        """
        self.persistence = persistence
        self.clock = clock
        self._owner_locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _owner_lock(self, owner_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._owner_locks.get(owner_id)
            if lock is None:
                lock = threading.RLock()
                self._owner_locks[owner_id] = lock
            return lock

    @contextmanager
    def write_lock(self, owner_id: str) -> Iterator[None]:
        """Hold the owner's write lock for a batch of writes."""
        with self._owner_lock(owner_id):
            yield

    def _find_active_import(
        self, owner_id: str, external_id: str
    ) -> Optional[SpecialDate]:
        for record in self.persistence.load_records(owner_id):
            if (
                record.active
                and record.source_origin == SourceOrigin.IMPORTED_EXTERNAL
                and record.external_id == external_id
            ):
                return record
        return None

    def create(self, data: Union[SpecialDateDraft, Mapping[str, Any]]) -> str:
        """
        Create a record.

        Args:
            data: Draft model or mapping of draft fields

        Returns:
            The new record id

        Raises:
            ValidationError: If the input is malformed or duplicates an
                active import of the same external id
        """
        draft = validate_draft(data)

        with self.write_lock(draft.owner_id):
            if draft.source_origin == SourceOrigin.IMPORTED_EXTERNAL:
                existing = self._find_active_import(draft.owner_id, draft.external_id)
                if existing is not None:
                    raise ValidationError(
                        f"external id {draft.external_id} already imported as {existing.id}"
                    )

            now = self.clock()
            record = SpecialDate.model_validate(
                {
                    **draft.model_dump(),
                    "id": uuid.uuid4().hex,
                    "created_at": now,
                    "updated_at": now,
                    "active": True,
                }
            )
            self.persistence.save_record(record)

        logger.debug(f"Created {record.category.value} '{record.display_name}' ({record.id})")
        return record.id

    def get(self, record_id: str) -> SpecialDate:
        """
        Get a record by id, including soft-deleted ones.

        Raises:
            NotFoundError: If no record has this id
        """
        record = self.persistence.load_record(record_id)
        if record is None:
            raise NotFoundError(f"No record with id {record_id}")
        return record

    def update(self, record_id: str, patch: Mapping[str, Any]) -> None:
        """
        Apply a partial update to an active record.

        Args:
            record_id: Record identifier
            patch: Field values to change (see MUTABLE_FIELDS)

        Raises:
            NotFoundError: If the record is missing or inactive
            ValidationError: If the patch touches store-managed fields or the
                patched record breaks an invariant
        """
        forbidden = set(patch) - MUTABLE_FIELDS
        if forbidden:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(forbidden))}")

        owner_id = self.get(record_id).owner_id
        with self.write_lock(owner_id):
            # Re-read under the lock
            record = self.persistence.load_record(record_id)
            if record is None or not record.active:
                raise NotFoundError(f"No active record with id {record_id}")

            current = record.draft_fields()
            draft = validate_draft({**current, **patch})
            if draft.model_dump() == current:
                logger.debug(f"Update of {record_id} changes nothing, skipped")
                return

            updated = SpecialDate.model_validate(
                {
                    **draft.model_dump(),
                    "id": record.id,
                    "created_at": record.created_at,
                    "updated_at": self.clock(),
                    "active": True,
                }
            )
            self.persistence.save_record(updated)

        logger.debug(f"Updated '{updated.display_name}' ({record_id})")

    def soft_delete(self, record_id: str) -> None:
        """
        Deactivate a record. It stays readable through get().

        Raises:
            NotFoundError: If no record has this id
        """
        owner_id = self.get(record_id).owner_id
        with self.write_lock(owner_id):
            record = self.get(record_id)
            if not record.active:
                return
            self.persistence.save_record(
                record.model_copy(update={"active": False, "updated_at": self.clock()})
            )
        logger.debug(f"Soft-deleted {record_id}")

    def restore(self, record_id: str) -> None:
        """
        Undo a soft delete.

        Raises:
            NotFoundError: If no record has this id
            ValidationError: If an active import now holds the same external id
        """
        owner_id = self.get(record_id).owner_id
        with self.write_lock(owner_id):
            record = self.get(record_id)
            if record.active:
                return
            if record.source_origin == SourceOrigin.IMPORTED_EXTERNAL:
                clash = self._find_active_import(owner_id, record.external_id)
                if clash is not None:
                    raise ValidationError(
                        f"external id {record.external_id} is held by {clash.id}"
                    )
            self.persistence.save_record(
                record.model_copy(update={"active": True, "updated_at": self.clock()})
            )
        logger.debug(f"Restored {record_id}")

    def find_by_external_id(
        self, owner_id: str, external_id: str
    ) -> Optional[SpecialDate]:
        """Active imported record of the owner with this provider id, if any."""
        return self._find_active_import(owner_id, external_id)

    def get_sync_status(self, owner_id: str) -> Optional[SyncStatus]:
        return self.persistence.load_sync_status(owner_id)

    def save_sync_status(self, status: SyncStatus) -> None:
        with self.write_lock(status.owner_id):
            self.persistence.save_sync_status(status)

    def begin_sync(self, owner_id: str) -> tuple[SyncStatus, bool]:
        """
        Mark a sync pass as in progress unless one already is.

        Creates the owner's status on the first attempt.

        Returns:
            (status, started): the current status, and whether this call
            claimed the pass. When started is False nothing was written.
        """
        with self.write_lock(owner_id):
            status = self.persistence.load_sync_status(owner_id)
            if status is not None and status.in_progress:
                return status, False
            if status is None:
                status = SyncStatus(owner_id=owner_id)
            status = status.model_copy(update={"in_progress": True})
            self.persistence.save_sync_status(status)
            return status, True

    def clear_sync_flag(self, owner_id: str) -> Optional[SyncStatus]:
        """
        Clear a persisted in_progress flag.

        Returns:
            The owner's status after the call, or None if there is none
        """
        with self.write_lock(owner_id):
            status = self.persistence.load_sync_status(owner_id)
            if status is None or not status.in_progress:
                return status
            status = status.model_copy(update={"in_progress": False})
            self.persistence.save_sync_status(status)
        logger.info(f"Cleared in-progress sync flag for {owner_id}")
        return status

    def list(
        self, owner_id: str, filter: Optional[RecordFilter] = None
    ) -> list[SpecialDate]:
        """
        Active records of an owner matching the filter.

        Order is not guaranteed.
        """
        records = [r for r in self.persistence.load_records(owner_id) if r.active]
        if filter is None:
            return records
        return [r for r in records if filter.matches(r)]
