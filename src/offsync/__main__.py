"""
Main entrypoint: sync daemon, HTTP API and one-shot record commands.

Usage:
    python -m offsync                        # daemon: scheduler + connectivity check
    python -m offsync serve                  # HTTP API under uvicorn
    python -m offsync create --title T --body B
    python -m offsync list
    python -m offsync sync                   # one pass now
    python -m offsync retry                  # requeue FAILED records, then a pass
    python -m offsync stats
    python -m offsync status                 # last pass outcome
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from offsync.config import get_settings

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


async def _run_daemon() -> None:
    from offsync.scheduler.jobs import build_scheduler
    from offsync.scheduler.triggers import get_triggers
    from offsync.service import close_service, get_service

    settings = get_settings()
    service = get_service()  # opening the store releases stale SYNCING claims
    triggers = get_triggers()
    remote = service.coordinator.remote

    scheduler = build_scheduler(triggers, remote)
    scheduler.start()
    logger.info(
        "Scheduler started (periodic sync every %d min, connectivity check every %ds)",
        settings.periodic_sync_minutes,
        settings.connectivity_check_seconds,
    )

    try:
        # First check doubles as the start-up pass when the remote is reachable
        await triggers.on_connectivity_change(await remote.is_reachable())
        logger.info("Sync daemon running. Press Ctrl+C to stop.")
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown(wait=False)
        await close_service()
        logger.info("Goodbye.")


def _run_server() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("offsync.api.main:app", host=settings.api_host, port=settings.api_port)


def _print_result(result) -> None:
    if not result.ran:
        print("A sync pass is already running; nothing started.")
        return
    print(
        f"Pass ({result.trigger}): {result.attempted} attempted, "
        f"{result.succeeded} synced, {result.failed} failed, "
        f"{result.still_pending} still pending"
    )
    for error in result.errors:
        print(f"  error: {error}")


async def _sync(retry: bool) -> None:
    from offsync.service import close_service, get_service

    service = get_service()
    try:
        result = await (service.retry_failed() if retry else service.sync_now())
    finally:
        await close_service()
    _print_result(result)


def _create(title: str, body: str) -> int:
    from offsync.service import ValidationError, get_service

    try:
        record = get_service().create_record(title, body)
    except ValidationError as exc:
        print(f"Invalid record: {exc}", file=sys.stderr)
        return 2
    print(f"Created {record.id} (PENDING)")
    return 0


def _list() -> None:
    from offsync.models.record import SyncStatus
    from offsync.service import get_service

    for record in get_service().list_records():
        line = f"{record.created_at:%Y-%m-%d %H:%M:%S}  {record.sync_status.value:<8} {record.id}  {record.title}"
        if record.remote_id is not None:
            line += f"  [remote {record.remote_id}]"
        print(line)
        if record.sync_error:
            retrying = "retrying automatically" if record.sync_status == SyncStatus.PENDING else "use `retry`"
            print(f"    last error: {record.sync_error} ({retrying})")


def _stats() -> None:
    from offsync.service import get_service

    stats = get_service().stats()
    print(
        f"total={stats.total} synced={stats.synced} "
        f"pending={stats.pending} failed={stats.failed}"
    )


def _status() -> None:
    from offsync.service import get_service

    log = get_service().last_pass()
    if log is None:
        print("No sync pass has run yet.")
        return
    print(
        f"{log.status} ({log.trigger}) started {log.started_at:%Y-%m-%d %H:%M:%S}: "
        f"{log.succeeded} synced, {log.failed} failed, {log.still_pending} still pending"
    )
    if log.error_message:
        print(f"  {log.error_message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="offsync", description="Offline record sync engine")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the sync daemon (default)")
    sub.add_parser("serve", help="Serve the HTTP API")
    create = sub.add_parser("create", help="Create a record (stored offline as PENDING)")
    create.add_argument("--title", required=True)
    create.add_argument("--body", required=True)
    sub.add_parser("list", help="List records, newest first")
    sub.add_parser("sync", help="Run one sync pass now")
    sub.add_parser("retry", help="Requeue failed records and run a pass")
    sub.add_parser("stats", help="Show record counts by status")
    sub.add_parser("status", help="Show the most recent pass")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(get_settings().log_level)

    command = args.command or "run"
    if command == "run":
        asyncio.run(_run_daemon())
    elif command == "serve":
        _run_server()
    elif command == "create":
        return _create(args.title, args.body)
    elif command == "list":
        _list()
    elif command == "sync":
        asyncio.run(_sync(retry=False))
    elif command == "retry":
        asyncio.run(_sync(retry=True))
    elif command == "stats":
        _stats()
    elif command == "status":
        _status()
    return 0


if __name__ == "__main__":
    sys.exit(main())
