from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from datetime import datetime
import uuid
from models.base import Base, SyncStatus


class SyncRun(Base):
    """
    Tracks metadata for each sync round.

    Purpose:
    - Audit trail of all rounds, including no-op rounds
    - Error tracking and debugging (failed rounds, catalog sync failures)
    - Checkpoint lineage (before/after per round)
    """
    __tablename__ = "sync_runs"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    run_id = Column(UUID(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    table_name = Column(String(200), nullable=False, index=True)
    status = Column(Enum(SyncStatus), default=SyncStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    total_records = Column(Integer, default=0)
    total_error_records = Column(Integer, default=0)

    # Checkpoint info
    checkpoint_before = Column(String(255), nullable=True)
    checkpoint_after = Column(String(255), nullable=True)

    # Timeline info
    instant_time = Column(String(32), nullable=True)
    scheduled_compaction = Column(String(32), nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONB, nullable=True)
    catalog_sync_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_table_started", "table_name", "started_at"),
    )
