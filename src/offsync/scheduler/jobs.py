"""
APScheduler jobs for background sync.

periodic_sync      every N minutes (never below 15) requests a pass.
connectivity_check polls the remote and feeds the result into the
                   connectivity trigger, so a pass starts as soon as the
                   network comes back.

The scheduler runs inside the same process as the service (wired in __main__).
Job bodies never raise, so the scheduler stays alive.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from offsync.config import MIN_PERIODIC_SYNC_MINUTES, get_settings
from offsync.remote.client import RemoteClient
from offsync.scheduler.triggers import SyncTriggers

logger = logging.getLogger(__name__)


def build_scheduler(triggers: SyncTriggers, remote: RemoteClient) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        triggers: SyncTriggers instance the jobs report to.
        remote: RemoteClient used for the reachability check.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        minutes=max(settings.periodic_sync_minutes, MIN_PERIODIC_SYNC_MINUTES),
        id="periodic_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"triggers": triggers},
    )
    scheduler.add_job(
        _check_connectivity,
        trigger="interval",
        seconds=settings.connectivity_check_seconds,
        id="connectivity_check",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"triggers": triggers, "remote": remote},
    )

    return scheduler


async def _periodic_sync(triggers: SyncTriggers) -> None:
    """Periodic job: request a pass. Idempotent; safe while a pass runs."""
    try:
        result = await triggers.on_periodic()
        if result.ran:
            logger.info(
                "Periodic sync: %d succeeded, %d still pending",
                result.succeeded,
                result.still_pending,
            )
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)


async def _check_connectivity(triggers: SyncTriggers, remote: RemoteClient) -> None:
    """Check job: report reachability so offline -> online starts a pass."""
    try:
        online = await remote.is_reachable()
        await triggers.on_connectivity_change(online)
    except Exception as exc:
        logger.error("Connectivity check failed: %s", exc)
