"""Sync trigger, host event and status routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from offsync.scheduler.triggers import SyncTriggers, get_triggers
from offsync.service import RecordService, get_service

router = APIRouter()


class ConnectivityEvent(BaseModel):
    online: bool


class SyncStatusResponse(BaseModel):
    status: str
    trigger: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    succeeded: Optional[int]
    failed: Optional[int]
    still_pending: Optional[int]
    error_message: Optional[str]


@router.post("")
async def sync_now(triggers: SyncTriggers = Depends(get_triggers)):
    """
    Run a sync pass now and return its result.
    If a pass is already running the result has ran=false.
    """
    return await triggers.request_sync("manual")


@router.post("/retry-failed")
async def retry_failed(service: RecordService = Depends(get_service)):
    """Requeue FAILED records and run a pass."""
    return await service.retry_failed()


@router.post("/events/connectivity")
async def connectivity_changed(
    event: ConnectivityEvent,
    triggers: SyncTriggers = Depends(get_triggers),
):
    """Host hook: network state changed. Offline -> online requests a pass."""
    result = await triggers.on_connectivity_change(event.online)
    return {"requested": result is not None, "result": result}


@router.post("/events/foreground")
async def app_foregrounded(triggers: SyncTriggers = Depends(get_triggers)):
    """Host hook: app returned to the foreground."""
    result = await triggers.on_foreground()
    return {"requested": result is not None, "result": result}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(service: RecordService = Depends(get_service)):
    """Return the outcome of the most recent sync pass."""
    log = service.last_pass()
    if not log:
        return SyncStatusResponse(
            status="never_run",
            trigger=None,
            started_at=None,
            finished_at=None,
            succeeded=None,
            failed=None,
            still_pending=None,
            error_message=None,
        )
    return SyncStatusResponse(
        status=log.status,
        trigger=log.trigger,
        started_at=log.started_at,
        finished_at=log.finished_at,
        succeeded=log.succeeded,
        failed=log.failed,
        still_pending=log.still_pending,
        error_message=log.error_message,
    )
