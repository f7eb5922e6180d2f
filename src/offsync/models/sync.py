"""Sync pass audit log model."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from offsync.models.record import utcnow


class SyncPassLog(SQLModel, table=True):
    """Records each executed sync pass for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    trigger: str = "manual"  # "manual", "periodic", "connectivity", "foreground", "retry"
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    finished_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: str = "running"  # "running", "success", "partial", "error", "interrupted"
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0
    error_message: Optional[str] = None
