"""In-process persistence backend."""

import threading
from typing import Optional

from ..models.special_date import SpecialDate
from ..models.sync_status import SyncStatus
from .base import PersistenceStore


class InMemoryPersistence(PersistenceStore):
    """Dict-backed store. Values are copied in and out."""

    def __init__(self):
        self._records: dict[str, SpecialDate] = {}
        self._statuses: dict[str, SyncStatus] = {}
        self._lock = threading.Lock()
        self.write_count = 0

    def save_record(self, record: SpecialDate) -> None:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
            self.write_count += 1

    def load_record(self, record_id: str) -> Optional[SpecialDate]:
        with self._lock:
            record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def load_records(self, owner_id: str) -> list[SpecialDate]:
        with self._lock:
            records = [r for r in self._records.values() if r.owner_id == owner_id]
        return [r.model_copy(deep=True) for r in records]

    def save_sync_status(self, status: SyncStatus) -> None:
        with self._lock:
            self._statuses[status.owner_id] = status.model_copy()
            self.write_count += 1

    def load_sync_status(self, owner_id: str) -> Optional[SyncStatus]:
        with self._lock:
            status = self._statuses.get(owner_id)
        return status.model_copy() if status else None
