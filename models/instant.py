from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Integer, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
from models.base import Base, InstantAction, InstantState


class TableInstant(Base):
    """
    One transaction on a table's timeline.

    Design:
    - instant_time is a sortable yyyyMMddHHmmssSSS string, unique per table
    - Only COMPLETED instants are visible to checkpoint resolution
    - extra_metadata holds the commit metadata map (checkpoint keys live here)
    """
    __tablename__ = "sync_instants"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    base_path = Column(String(500), ForeignKey("sync_tables.base_path"), nullable=False)
    instant_time = Column(String(32), nullable=False)

    action = Column(Enum(InstantAction), nullable=False)
    state = Column(Enum(InstantState), nullable=False, default=InstantState.REQUESTED)

    extra_metadata = Column(JSONB, nullable=True)
    total_records = Column(Integer, default=0)
    total_error_records = Column(Integer, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_instant_table_time", "base_path", "instant_time", unique=True),
        Index("idx_instant_table_state", "base_path", "state", "action"),
    )
