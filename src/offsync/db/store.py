"""
RecordStore: durable keyed storage of records and their sync state.

The store is the single source of truth for sync status. Every write is one
SQLite transaction, so a crash leaves either the pre-write or the post-write
row, never a mix.

Status changes go through update_status(), a compare-and-set UPDATE:

    UPDATE record SET ... WHERE id = :id AND sync_status = :current

Two passes (even in different processes) can therefore never both claim the
same PENDING record.

Recovery: SYNCING is a lease. A claim sets last_sync_attempt, and a live
attempt holds it for at most one bounded send plus one store write. A
SYNCING record whose claim is older than lease_seconds belonged to an
attempt that died with its process, so it is reset to PENDING. This runs
inside __init__ and again at the start of every pass. Fresh claims held by
a pass in another process sharing the database are never touched.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from offsync.models.record import (
    ERROR_BEARING_STATUSES,
    Record,
    SyncStatus,
    can_transition,
    utcnow,
)
from offsync.models.sync import SyncPassLog

logger = logging.getLogger(__name__)

# Must outlive the remote send timeout plus a store write
DEFAULT_CLAIM_LEASE_SECONDS = 60.0

Listener = Callable[[Record], None]


# ── Exceptions ────────────────────────────────────────────────────────────────

class StoreError(RuntimeError):
    """Raised when the local database cannot complete a read or write."""


class ConflictError(StoreError):
    """Raised by insert() when a record with the same id already exists."""


class RecordNotFoundError(StoreError):
    """Raised when a status update names an id that is not in the store."""


class InvalidTransitionError(StoreError):
    """Raised for a status change the sync state machine does not allow."""


# ── Main class ────────────────────────────────────────────────────────────────

class RecordStore:
    """
    SQLModel-backed record store.

    Usage:
        store = RecordStore(engine)        # releases stale SYNCING claims
        store.insert(Record(title="A", body="B"))
        store.list_by_status(SyncStatus.PENDING, oldest_first=True)
    """

    def __init__(self, engine, lease_seconds: float = DEFAULT_CLAIM_LEASE_SECONDS):
        """
        Args:
            engine: SQLAlchemy engine with the schema already created.
            lease_seconds: Age after which a SYNCING claim is considered dead.
        """
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        self.engine = engine
        self.lease_seconds = lease_seconds
        self._listeners: List[Listener] = []
        self.recovered_count = self._recover()

    # ── Change notification ───────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with the record after every committed write.

        Listeners run synchronously on the thread that performed the write.
        Writes made by a sync pass happen in the event loop's default
        executor, so an asyncio consumer must hop back onto its loop, e.g.
        with loop.call_soon_threadsafe().

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, record: Record) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as exc:
                logger.error("Store listener failed for record %s: %s", record.id, exc)

    # ── Records: writes ───────────────────────────────────────────────────────

    def insert(self, record: Record) -> Record:
        """Insert a new record. Raises ConflictError if the id already exists."""
        with self._session("insert record") as s:
            s.add(record)
            try:
                s.commit()
            except IntegrityError as exc:
                raise ConflictError(f"Record {record.id} already exists") from exc
            s.refresh(record)

        logger.info("Inserted record %s", record.id)
        self._notify(record)
        return record

    def update_status(
        self,
        record_id: str,
        status: SyncStatus,
        *,
        expected: Optional[SyncStatus] = None,
        remote_id: Optional[int] = None,
        sync_error: Optional[str] = None,
        attempted_at: Optional[datetime] = None,
        attempt_count: Optional[int] = None,
    ) -> Optional[Record]:
        """
        Atomically move a record to `status`.

        Args:
            record_id: Record primary key.
            status: Target status. Must be allowed from the current status.
            expected: If given, only update when the current status equals it.
            remote_id: Remote identifier; only accepted on the move into SYNCED.
            sync_error: Failure description, kept for PENDING/FAILED only.
            attempted_at: New last_sync_attempt value (unchanged if None).
            attempt_count: New attempt_count value (unchanged if None).

        Returns:
            The updated Record, or None if `expected` did not match or another
            writer changed the status first.

        Raises:
            RecordNotFoundError: no record has this id.
            InvalidTransitionError: the transition breaks the state machine.
            StoreError: the database write failed.
        """
        with self._session("update sync status") as s:
            current = s.get(Record, record_id)
            if current is None:
                raise RecordNotFoundError(f"Record {record_id} not found")
            if expected is not None and current.sync_status != expected:
                return None
            if not can_transition(current.sync_status, status):
                raise InvalidTransitionError(
                    f"Record {record_id}: {current.sync_status.value} -> {status.value} "
                    "is not allowed"
                )

            values: Dict[str, object] = {
                "sync_status": status,
                "sync_error": sync_error if status in ERROR_BEARING_STATUSES else None,
            }
            if status == SyncStatus.SYNCED:
                if current.remote_id is None:
                    if remote_id is None:
                        raise InvalidTransitionError(
                            f"Record {record_id}: SYNCED requires a remote_id"
                        )
                    values["remote_id"] = remote_id
                elif remote_id is not None and remote_id != current.remote_id:
                    raise InvalidTransitionError(
                        f"Record {record_id}: remote_id {current.remote_id} is already set"
                    )
            elif remote_id is not None:
                raise InvalidTransitionError(
                    f"Record {record_id}: remote_id is only set on the move into SYNCED"
                )
            if attempted_at is not None:
                values["last_sync_attempt"] = attempted_at
            if attempt_count is not None:
                values["attempt_count"] = attempt_count

            stmt = (
                update(Record)
                .where(Record.id == record_id)
                .where(Record.sync_status == current.sync_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = s.exec(stmt)
            if result.rowcount == 0:
                s.rollback()
                return None
            s.commit()
            s.refresh(current)

        logger.debug("Record %s -> %s", record_id, status.value)
        self._notify(current)
        return current

    def requeue_failed(self) -> int:
        """Move every FAILED record back to PENDING. Returns how many moved."""
        with self._session("requeue failed records") as s:
            failed = s.exec(
                select(Record).where(Record.sync_status == SyncStatus.FAILED)
            ).all()
            for record in failed:
                record.sync_status = SyncStatus.PENDING
                record.sync_error = None
                record.attempt_count = 0
                s.add(record)
            s.commit()
            for record in failed:
                s.refresh(record)

        if failed:
            logger.info("Requeued %d failed record(s)", len(failed))
        for record in failed:
            self._notify(record)
        return len(failed)

    def release_stale_claims(self, now: Optional[datetime] = None) -> int:
        """
        Move SYNCING records whose claim outlived the lease back to PENDING.

        The reset is one conditional UPDATE, so a pass that finishes its
        attempt at the same moment either wins with its own CAS write or
        finds the record PENDING again. Returns how many records moved.
        """
        cutoff = (now or utcnow()) - timedelta(seconds=self.lease_seconds)
        stale = and_(
            Record.sync_status == SyncStatus.SYNCING,
            or_(Record.last_sync_attempt.is_(None), Record.last_sync_attempt < cutoff),
        )
        with self._session("release stale claims") as s:
            stale_ids = list(s.exec(select(Record.id).where(stale)).all())
            if not stale_ids:
                return 0
            s.exec(
                update(Record)
                .where(Record.id.in_(stale_ids))
                .where(stale)
                .values(sync_status=SyncStatus.PENDING, sync_error=None)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            released = list(
                s.exec(
                    select(Record)
                    .where(Record.id.in_(stale_ids))
                    .where(Record.sync_status == SyncStatus.PENDING)
                ).all()
            )

        if released:
            logger.warning(
                "Released %d SYNCING claim(s) older than %.0fs: %s",
                len(released),
                self.lease_seconds,
                ", ".join(record.id for record in released),
            )
        for record in released:
            self._notify(record)
        return len(released)

    # ── Records: reads ────────────────────────────────────────────────────────

    def get(self, record_id: str) -> Optional[Record]:
        with self._session("fetch record") as s:
            return s.get(Record, record_id)

    def list_records(self) -> List[Record]:
        """All records, newest first."""
        with self._session("list records") as s:
            return list(
                s.exec(
                    select(Record).order_by(Record.created_at.desc(), Record.id.desc())
                ).all()
            )

    def list_by_status(
        self, status: SyncStatus, *, oldest_first: bool = False
    ) -> List[Record]:
        """Records with the given status, newest first unless oldest_first."""
        if oldest_first:
            order = (Record.created_at.asc(), Record.id.asc())
        else:
            order = (Record.created_at.desc(), Record.id.desc())
        with self._session("list records by status") as s:
            return list(
                s.exec(
                    select(Record).where(Record.sync_status == status).order_by(*order)
                ).all()
            )

    def count_by_status(self, status: SyncStatus) -> int:
        with self._session("count records") as s:
            return s.exec(
                select(func.count())
                .select_from(Record)
                .where(Record.sync_status == status)
            ).one()

    def status_counts(self) -> Dict[SyncStatus, int]:
        """Count of records per status, zero-filled, read in one snapshot."""
        counts = {status: 0 for status in SyncStatus}
        with self._session("count records") as s:
            rows = s.exec(
                select(Record.sync_status, func.count()).group_by(Record.sync_status)
            ).all()
        for status, count in rows:
            counts[SyncStatus(status)] = count
        return counts

    # ── Pass audit log ────────────────────────────────────────────────────────

    def start_pass(self, trigger: str, started_at: Optional[datetime] = None) -> SyncPassLog:
        log = SyncPassLog(trigger=trigger, started_at=started_at or utcnow(), status="running")
        with self._session("create pass log") as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def finish_pass(
        self,
        log_id: int,
        *,
        status: str,
        succeeded: int = 0,
        failed: int = 0,
        still_pending: int = 0,
        error_message: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> None:
        with self._session("finish pass log") as s:
            db_log = s.get(SyncPassLog, log_id)
            if db_log is None:
                return
            db_log.status = status
            db_log.finished_at = finished_at or utcnow()
            db_log.succeeded = succeeded
            db_log.failed = failed
            db_log.still_pending = still_pending
            db_log.error_message = error_message
            s.add(db_log)
            s.commit()

    def latest_pass(self) -> Optional[SyncPassLog]:
        with self._session("fetch pass log") as s:
            return s.exec(
                select(SyncPassLog).order_by(SyncPassLog.started_at.desc(), SyncPassLog.id.desc())
            ).first()

    # ── Internal helpers ──────────────────────────────────────────────────────

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        """Session scope that turns database failures into StoreError."""
        try:
            with Session(self.engine) as s:
                yield s
        except SQLAlchemyError as exc:
            logger.error("Store failed to %s: %s", action, exc)
            raise StoreError(f"Failed to {action}: {exc}") from exc

    def _recover(self) -> int:
        """Release dead SYNCING claims and close out pass logs left running.

        A pass log still running after the lease is marked interrupted. If its
        pass is in fact alive, finish_pass() overwrites the status when it ends.
        """
        now = utcnow()
        released = self.release_stale_claims(now)

        cutoff = now - timedelta(seconds=self.lease_seconds)
        with self._session("close interrupted passes") as s:
            running = s.exec(
                select(SyncPassLog)
                .where(SyncPassLog.status == "running")
                .where(SyncPassLog.started_at < cutoff)
            ).all()
            for log in running:
                log.status = "interrupted"
                log.finished_at = now
                log.error_message = "Process stopped before the pass finished"
                s.add(log)
            s.commit()

        if running:
            logger.warning("Marked %d unfinished pass log(s) interrupted", len(running))
        return released
