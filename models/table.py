from sqlalchemy import Column, String, Enum, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
from models.base import Base, TableType


class SyncTable(Base):
    """
    Table shell registered in the store.

    Purpose:
    - Marks that table metadata exists for a base path
    - Records table type, which decides the commit timeline to read
    - Keeps the latest committed write schema for catalog publication
    """
    __tablename__ = "sync_tables"

    base_path = Column(String(500), primary_key=True)
    table_name = Column(String(200), nullable=False, unique=True)
    table_type = Column(Enum(TableType), nullable=False)
    payload_class = Column(String(200), nullable=False)
    archive_folder = Column(String(200), nullable=False, default="archived")

    table_schema = Column("schema", JSONB, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
