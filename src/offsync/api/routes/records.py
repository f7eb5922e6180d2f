"""Record creation and listing routes."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from offsync.models.record import Record
from offsync.service import RecordService, ValidationError, get_service

router = APIRouter()


class RecordCreateRequest(BaseModel):
    title: str
    body: str


class StatsResponse(BaseModel):
    total: int
    synced: int
    pending: int
    failed: int


@router.post("", response_model=Record, status_code=201)
def create_record(
    request: RecordCreateRequest,
    service: RecordService = Depends(get_service),
):
    """Store a record locally as PENDING. Succeeds offline."""
    try:
        return service.create_record(request.title, request.body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.get("", response_model=List[Record])
def list_records(service: RecordService = Depends(get_service)):
    """All records, newest first."""
    return service.list_records()


@router.get("/stats", response_model=StatsResponse)
def record_stats(service: RecordService = Depends(get_service)):
    stats = service.stats()
    return StatsResponse(
        total=stats.total,
        synced=stats.synced,
        pending=stats.pending,
        failed=stats.failed,
    )


@router.get("/{record_id}", response_model=Record)
def get_record(record_id: str, service: RecordService = Depends(get_service)):
    record = service.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    return record
