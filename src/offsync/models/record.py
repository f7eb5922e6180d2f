"""Record model: offline-created text content and its sync state."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

TITLE_MAX_LENGTH = 200
BODY_MAX_LENGTH = 5000


def utcnow() -> datetime:
    """Naive UTC timestamp. Every datetime column is a plain (timezone-less) DateTime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return str(uuid.uuid4())


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


# Per-record state machine. SYNCED is terminal; FAILED only leaves via requeue.
# PENDING -> SYNCED is the short-circuit for a record that already holds a remote_id.
ALLOWED_TRANSITIONS: Dict[SyncStatus, FrozenSet[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCING, SyncStatus.SYNCED}),
    SyncStatus.SYNCING: frozenset(
        {SyncStatus.SYNCED, SyncStatus.FAILED, SyncStatus.PENDING}
    ),
    SyncStatus.FAILED: frozenset({SyncStatus.PENDING}),
    SyncStatus.SYNCED: frozenset(),
}

# Statuses that may carry the last failure description.
ERROR_BEARING_STATUSES = frozenset({SyncStatus.PENDING, SyncStatus.FAILED})


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Record(SQLModel, table=True):
    """
    One row per record created on this device.

    title, body and created_at are written once at insert time; only the
    sync columns change afterwards.
    """

    id: str = Field(default_factory=new_record_id, primary_key=True)
    title: str = Field(max_length=TITLE_MAX_LENGTH)
    body: str = Field(max_length=BODY_MAX_LENGTH)
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)

    sync_status: SyncStatus = Field(default=SyncStatus.PENDING, index=True)
    remote_id: Optional[int] = Field(default=None, index=True)
    last_sync_attempt: Optional[datetime] = Field(default=None, sa_type=DateTime)
    sync_error: Optional[str] = None

    # Transient failures so far; drives backoff across passes
    attempt_count: int = Field(default=0)
