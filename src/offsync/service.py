"""
RecordService: the API the host application talks to.

    create_record(title, body) -> Record      (raises ValidationError)
    list_records()             -> [Record]    newest first
    sync_now()                 -> PassResult
    retry_failed()             -> PassResult
    stats()                    -> SyncStats

build_service() wires store, remote client, retry policy and coordinator
from Settings; get_service() keeps one instance per process so the
single-flight flag is shared by every trigger.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from offsync.config import Settings, get_settings
from offsync.db.store import RecordStore
from offsync.models.record import (
    BODY_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    Record,
    SyncStatus,
    utcnow,
)
from offsync.models.sync import SyncPassLog
from offsync.remote.client import RemoteClient
from offsync.sync.coordinator import PassResult, SyncCoordinator
from offsync.sync.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

CLAIM_LEASE_MARGIN_SECONDS = 30.0


class ValidationError(ValueError):
    """Raised when record input violates the content bounds."""


@dataclass
class SyncStats:
    total: int
    synced: int
    pending: int
    failed: int


def validate_record_input(title: str, body: str) -> None:
    """Check trimmed title/body against the content bounds."""
    title = (title or "").strip()
    body = (body or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be {TITLE_MAX_LENGTH} characters or less")
    if not body:
        raise ValidationError("Body is required")
    if len(body) > BODY_MAX_LENGTH:
        raise ValidationError(f"Body must be {BODY_MAX_LENGTH} characters or less")


class RecordService:
    """Offline-first record API over the store and the sync coordinator."""

    def __init__(self, store: RecordStore, coordinator: SyncCoordinator):
        self.store = store
        self.coordinator = coordinator

    def create_record(self, title: str, body: str) -> Record:
        """
        Validate and store a new PENDING record. Works offline.

        Raises:
            ValidationError: input out of bounds (nothing is written).
            StoreError: the record could not be persisted.
        """
        validate_record_input(title, body)
        record = Record(title=title.strip(), body=body.strip(), created_at=utcnow())
        self.store.insert(record)
        logger.info("Record created: %s", record.id)
        return record

    def get_record(self, record_id: str) -> Optional[Record]:
        return self.store.get(record_id)

    def list_records(self) -> List[Record]:
        return self.store.list_records()

    def stats(self) -> SyncStats:
        """Counts by status. Records mid-attempt (SYNCING) count as pending."""
        counts = self.store.status_counts()
        return SyncStats(
            total=sum(counts.values()),
            synced=counts[SyncStatus.SYNCED],
            pending=counts[SyncStatus.PENDING] + counts[SyncStatus.SYNCING],
            failed=counts[SyncStatus.FAILED],
        )

    def last_pass(self) -> Optional[SyncPassLog]:
        return self.store.latest_pass()

    async def sync_now(self, trigger: str = "manual") -> PassResult:
        return await self.coordinator.sync_now(trigger=trigger)

    async def retry_failed(self) -> PassResult:
        return await self.coordinator.retry_failed()

    async def close(self) -> None:
        close = getattr(self.coordinator.remote, "close", None)
        if close is not None:
            await close()


def build_service(settings: Optional[Settings] = None, engine=None) -> RecordService:
    """Wire a RecordService from settings. Opening the store releases stale claims."""
    settings = settings or get_settings()
    if engine is None:
        from offsync.db.engine import get_engine
        engine = get_engine()

    # A live claim lasts one send plus one write; the lease must outlive it
    lease = max(
        settings.claim_lease_seconds,
        settings.remote_timeout_seconds + CLAIM_LEASE_MARGIN_SECONDS,
    )
    store = RecordStore(engine, lease_seconds=lease)
    remote = RemoteClient(
        base_url=settings.remote_base_url,
        records_path=settings.remote_records_path,
        user_id=settings.remote_user_id,
        timeout=settings.remote_timeout_seconds,
    )
    policy = RetryPolicy(
        base=settings.backoff_base_seconds,
        cap=settings.backoff_cap_seconds,
        max_attempts_per_pass=settings.max_attempts_per_pass,
    )
    coordinator = SyncCoordinator(
        store=store,
        remote=remote,
        policy=policy,
        inter_record_delay=settings.inter_record_delay_seconds,
        send_timeout=settings.remote_timeout_seconds,
    )
    return RecordService(store=store, coordinator=coordinator)


_service: Optional[RecordService] = None


def get_service() -> RecordService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


async def close_service() -> None:
    """Release the process-wide service's HTTP client, if one was built."""
    if _service is not None:
        await _service.close()
