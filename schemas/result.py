"""
Pydantic schemas for checkpoint resolution and round outcomes
"""

from pydantic import BaseModel
from typing import Optional

from models.base import SyncStatus


class ResumeCheckpoint(BaseModel):
    """
    Checkpoint a round resumes from.

    value is None when the source should pick its own starting point.
    reset_marker is the user override in effect for this process; it is
    recorded on every commit so the same override is never applied twice.
    """
    value: Optional[str] = None
    reset_marker: Optional[str] = None

    class Config:
        frozen = True


class SyncRoundResult(BaseModel):
    """Outcome of one sync round"""
    status: SyncStatus
    table_name: str
    resumed_from: Optional[str] = None
    checkpoint: Optional[str] = None
    checkpoint_reset: Optional[str] = None
    instant_time: Optional[str] = None
    total_records: int = 0
    total_error_records: int = 0
    scheduled_compaction: Optional[str] = None
    catalog_sync_error: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status == SyncStatus.COMMITTED


class CommitResult(BaseModel):
    """What the write coordinator reports after a successful commit"""
    instant_time: str
    total_records: int = 0
    total_error_records: int = 0
    scheduled_compaction: Optional[str] = None
    catalog_sync_error: Optional[str] = None
