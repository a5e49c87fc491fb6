from sqlalchemy import Column, BigInteger, String, Enum, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
from models.base import Base, WriteOperation


class TableRecord(Base):
    """
    Committed, visible row of a target table.

    One row per (table, record key). Rows are only written here when an
    instant commits.
    """
    __tablename__ = "sync_records"

    base_path = Column(String(500), ForeignKey("sync_tables.base_path"), primary_key=True)
    record_key = Column(String(500), primary_key=True)
    partition_path = Column(String(500), nullable=False, default="")

    ordering_value = Column(JSONB, nullable=True)
    payload = Column(JSONB, nullable=False)

    commit_time = Column(String(32), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_record_partition", "base_path", "partition_path"),
    )


class StagedRecord(Base):
    """
    Row written under an inflight instant and not yet visible.

    Commit moves staged rows into TableRecord; rollback deletes them.
    """
    __tablename__ = "sync_staged_records"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    instant_id = Column(BigInteger, ForeignKey("sync_instants.id", ondelete="CASCADE"), nullable=False, index=True)

    record_key = Column(String(500), nullable=False)
    partition_path = Column(String(500), nullable=False, default="")
    operation = Column(Enum(WriteOperation), nullable=False)

    ordering_value = Column(JSONB, nullable=True)
    payload = Column(JSONB, nullable=False)
