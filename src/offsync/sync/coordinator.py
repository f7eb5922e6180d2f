"""
SyncCoordinator: pushes PENDING records to the remote, one pass at a time.

Flow for one pass:
  1. Single-flight check: a trigger that arrives while a pass runs is dropped
  2. Create SyncPassLog (status="running")
  3. Release SYNCING claims older than the store's lease, then read PENDING
     records, oldest first
  4. For each record, sequentially:
       remote_id already set -> SYNCED without contacting the remote
       otherwise claim PENDING -> SYNCING, send, then persist:
         Accepted    -> SYNCED + remote_id, error cleared
         Rejected    -> FAILED + error
         Unavailable -> PENDING + error; retried in this pass after the
                        policy's backoff while the per-pass budget allows
  5. Sleep the fixed inter-record delay before the next record
  6. Finish SyncPassLog, release the flag, return PassResult

Remote failures never raise out of sync_now(); they land on the record and
in PassResult. A store write failure only aborts that record's step (the
record stays SYNCING until its claim lease expires). Failing to read the
pending set at all raises StoreError.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from offsync.db.store import RecordStore, StoreError
from offsync.models.record import Record, SyncStatus, utcnow
from offsync.models.sync import SyncPassLog
from offsync.remote.client import Accepted, Outcome, RemoteClient, Unavailable
from offsync.sync.retry_policy import GiveUp, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_INTER_RECORD_DELAY = 0.1
DEFAULT_SEND_TIMEOUT = 10.0


@dataclass
class PassResult:
    """Aggregate outcome of one sync pass."""

    ran: bool = True
    trigger: str = "manual"
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def skipped(cls, trigger: str) -> "PassResult":
        """Result for a trigger dropped because another pass was running."""
        return cls(ran=False, trigger=trigger)

    @property
    def status(self) -> str:
        if not self.ran:
            return "skipped"
        if self.failed or self.still_pending or self.errors:
            return "partial"
        return "success"


class SyncCoordinator:
    """Runs sync passes over the record store. At most one pass at a time."""

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteClient,
        policy: Optional[RetryPolicy] = None,
        inter_record_delay: float = DEFAULT_INTER_RECORD_DELAY,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            store: RecordStore; stale claims are released at the start of each pass.
            remote: Anything with `async send(record) -> Outcome`.
            policy: Retry policy; defaults to RetryPolicy().
            inter_record_delay: Seconds to wait between records in a pass.
            send_timeout: Upper bound on one send() call; expiry is Unavailable.
            sleep: Awaitable sleep, replaced in tests. Defaults to asyncio.sleep.
            clock: Returns the current naive-UTC time. Defaults to utcnow.
        """
        self.store = store
        self.remote = remote
        self.policy = policy or RetryPolicy()
        self.inter_record_delay = inter_record_delay
        self.send_timeout = send_timeout
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or utcnow
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def sync_now(self, trigger: str = "manual") -> PassResult:
        """
        Run one pass over the PENDING records.

        Returns PassResult.skipped() without touching the store if a pass is
        already in progress.

        Raises:
            StoreError: if the pass log or the pending set cannot be read/written.
        """
        # Check-and-set happens before the first await, so it is atomic on the loop
        if self._running:
            logger.info("Sync pass already running; dropping %s trigger", trigger)
            return PassResult.skipped(trigger)

        self._running = True
        try:
            return await self._run_pass(trigger)
        finally:
            self._running = False

    async def retry_failed(self) -> PassResult:
        """
        Requeue every FAILED record, then run a normal pass.

        While another pass runs nothing is requeued and the result is skipped,
        so FAILED records stay FAILED until the retry is requested again.
        """
        if self._running:
            logger.info("Sync pass already running; dropping retry request")
            return PassResult.skipped("retry")

        self._running = True
        try:
            requeued = await self._run(self.store.requeue_failed)
            logger.info("Retry requested: %d failed record(s) requeued", requeued)
            return await self._run_pass("retry")
        finally:
            self._running = False

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _run_pass(self, trigger: str) -> PassResult:
        result = PassResult(trigger=trigger, started_at=self._clock())
        log = await self._run(self.store.start_pass, trigger, result.started_at)

        try:
            await self._run(self.store.release_stale_claims, self._clock())
            pending = await self._run(
                self.store.list_by_status, SyncStatus.PENDING, oldest_first=True
            )
        except StoreError as exc:
            result.finished_at = self._clock()
            await self._finish_log(log, result, status="error", error_message=str(exc))
            raise

        logger.info("Sync pass (%s) starting: %d pending record(s)", trigger, len(pending))

        for index, record in enumerate(pending):
            if index > 0:
                await self._sleep(self.inter_record_delay)
            try:
                await self._sync_record(record, result)
            except StoreError as exc:
                logger.error("Store write failed for record %s: %s", record.id, exc)
                result.errors.append(f"{record.id}: {exc}")

        result.finished_at = self._clock()
        await self._finish_log(log, result, status=result.status)
        logger.info(
            "Sync pass (%s) finished: %d succeeded, %d failed, %d still pending",
            trigger,
            result.succeeded,
            result.failed,
            result.still_pending,
        )
        return result

    async def _sync_record(self, record: Record, result: PassResult) -> None:
        """Drive one record through as many attempts as this pass allows."""
        if record.remote_id is not None:
            # Remote already accepted it; a previous SYNCED write must have been lost
            updated = await self._run(
                self.store.update_status,
                record.id,
                SyncStatus.SYNCED,
                expected=SyncStatus.PENDING,
            )
            if updated is not None:
                logger.info(
                    "Record %s already has remote id %s; marked SYNCED without sending",
                    record.id,
                    record.remote_id,
                )
                result.succeeded += 1
            return

        attempt_count = record.attempt_count
        attempts_this_pass = 0

        while True:
            claimed = await self._run(
                self.store.update_status,
                record.id,
                SyncStatus.SYNCING,
                expected=SyncStatus.PENDING,
                attempted_at=self._clock(),
            )
            if claimed is None:
                logger.warning("Record %s changed before it could be claimed; skipping", record.id)
                return
            if attempts_this_pass == 0:
                result.attempted += 1

            outcome = await self._send(claimed)
            attempts_this_pass += 1

            if isinstance(outcome, Accepted):
                # No `expected`: the remote has the record, so the id must be kept
                # even if the row was reset underneath us
                updated = await self._run(
                    self.store.update_status,
                    record.id,
                    SyncStatus.SYNCED,
                    remote_id=outcome.remote_id,
                    attempted_at=self._clock(),
                )
                if updated is None:
                    raise StoreError(
                        f"Remote accepted record {record.id} as {outcome.remote_id} "
                        "but the SYNCED write lost a race"
                    )
                result.succeeded += 1
                return

            decision = self.policy.next(attempt_count, outcome)

            if isinstance(decision, GiveUp):
                await self._run(
                    self.store.update_status,
                    record.id,
                    SyncStatus.FAILED,
                    expected=SyncStatus.SYNCING,
                    sync_error=outcome.reason,
                    attempted_at=self._clock(),
                )
                logger.warning("Record %s failed permanently: %s", record.id, outcome.reason)
                result.failed += 1
                return

            attempt_count += 1
            await self._run(
                self.store.update_status,
                record.id,
                SyncStatus.PENDING,
                expected=SyncStatus.SYNCING,
                sync_error=outcome.reason,
                attempted_at=self._clock(),
                attempt_count=attempt_count,
            )

            if not self.policy.allows_another_attempt(attempts_this_pass):
                logger.warning(
                    "Record %s still unavailable after %d attempt(s) this pass: %s",
                    record.id,
                    attempts_this_pass,
                    outcome.reason,
                )
                result.still_pending += 1
                return

            logger.warning(
                "Record %s unavailable (%s); retrying in %.1fs",
                record.id,
                outcome.reason,
                decision.after,
            )
            await self._sleep(decision.after)

    async def _send(self, record: Record) -> Outcome:
        """Call the remote with a bounded timeout; any exception is transient."""
        try:
            return await asyncio.wait_for(self.remote.send(record), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send %s exceeded %.1fs", record.id, self.send_timeout)
            return Unavailable("Request timeout")
        except Exception as exc:
            logger.warning("Remote client raised for record %s: %r", record.id, exc)
            return Unavailable(str(exc) or type(exc).__name__)

    async def _finish_log(
        self,
        log: SyncPassLog,
        result: PassResult,
        *,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        if error_message is None and result.errors:
            error_message = "; ".join(result.errors)
        try:
            await self._run(
                self.store.finish_pass,
                log.id,
                status=status,
                succeeded=result.succeeded,
                failed=result.failed,
                still_pending=result.still_pending,
                error_message=error_message,
                finished_at=result.finished_at,
            )
        except StoreError as exc:
            # Record states are already persisted; only the audit row is lost
            logger.error("Could not finish pass log %s: %s", log.id, exc)

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking store call in the thread pool."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))
