"""Calendar sync status and state models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PermissionStatus(str, Enum):
    """Calendar permission as reported by the permission subsystem."""

    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


class SyncState(str, Enum):
    """Per-owner calendar sync state."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(BaseModel):
    """Persisted sync bookkeeping, one per owner."""

    owner_id: str
    last_sync_at: Optional[datetime] = None
    enabled: bool = True
    total_synced: int = 0
    last_error: Optional[str] = None
    in_progress: bool = False
