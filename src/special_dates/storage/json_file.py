"""JSON file persistence backend."""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..models.special_date import SpecialDate
from ..models.sync_status import SyncStatus
from ..utils.exceptions import StorageError
from .base import PersistenceStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class StoreDocument(BaseModel):
    """On-disk layout of the data file."""

    schema_version: int = SCHEMA_VERSION
    records: dict[str, SpecialDate] = Field(default_factory=dict)
    sync_statuses: dict[str, SyncStatus] = Field(default_factory=dict)


class JsonFilePersistence(PersistenceStore):
    """
    Keeps the whole data set in one JSON file.

    The file is read once and kept in memory; every write rewrites it through
    a temporary file and an atomic rename.
    """

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: Data file location (created on first write)

        Raises:
            StorageError: If an existing file cannot be parsed
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self._document = self._read()

    def _read(self) -> StoreDocument:
        if not self.path.exists():
            logger.debug(f"No data file at {self.path}, starting empty")
            return StoreDocument()

        try:
            raw = self.path.read_text(encoding="utf-8")
            document = StoreDocument.model_validate_json(raw)
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt data file {self.path}: {e}") from e

        if document.schema_version != SCHEMA_VERSION:
            raise StorageError(
                f"Unsupported schema version {document.schema_version} in {self.path}"
            )
        logger.info(f"Loaded {len(document.records)} record(s) from {self.path}")
        return document

    def _flush(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                self._document.model_dump_json(indent=2), encoding="utf-8"
            )
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def save_record(self, record: SpecialDate) -> None:
        with self._lock:
            previous = self._document.records.get(record.id)
            self._document.records[record.id] = record.model_copy(deep=True)
            try:
                self._flush()
            except StorageError:
                # Keep memory and disk in agreement
                if previous is None:
                    del self._document.records[record.id]
                else:
                    self._document.records[record.id] = previous
                raise

    def load_record(self, record_id: str) -> Optional[SpecialDate]:
        with self._lock:
            record = self._document.records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def load_records(self, owner_id: str) -> list[SpecialDate]:
        with self._lock:
            records = [
                r for r in self._document.records.values() if r.owner_id == owner_id
            ]
        return [r.model_copy(deep=True) for r in records]

    def save_sync_status(self, status: SyncStatus) -> None:
        with self._lock:
            previous = self._document.sync_statuses.get(status.owner_id)
            self._document.sync_statuses[status.owner_id] = status.model_copy()
            try:
                self._flush()
            except StorageError:
                if previous is None:
                    del self._document.sync_statuses[status.owner_id]
                else:
                    self._document.sync_statuses[status.owner_id] = previous
                raise

    def load_sync_status(self, owner_id: str) -> Optional[SyncStatus]:
        with self._lock:
            status = self._document.sync_statuses.get(owner_id)
        return status.model_copy() if status else None
