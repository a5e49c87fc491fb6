"""
SQLAlchemy ORM models backing the Postgres table store.

Models:
    base: Base declarative class and shared enums (TableType, WriteOperation,
          InstantAction, InstantState, SyncStatus)
    table: Registered table shells (one row per base path)
    instant: Timeline instants with commit metadata
    record: Committed records and records staged under an inflight instant
    sync_run: Sync round audit trail

Database Schema:
    All models inherit from the Base declarative class and use
    PostgreSQL-specific features like JSONB for commit metadata and payloads.

Relationships:
    - SyncTable → TableInstant (one-to-many timeline)
    - SyncTable → TableRecord (one-to-many visible rows)
    - TableInstant → StagedRecord (one-to-many, discarded on rollback)
"""

from models.base import Base, TableType, WriteOperation, InstantAction, InstantState, SyncStatus
from models.table import SyncTable
from models.instant import TableInstant
from models.record import TableRecord, StagedRecord
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "TableType",
    "WriteOperation",
    "InstantAction",
    "InstantState",
    "SyncStatus",
    "SyncTable",
    "TableInstant",
    "TableRecord",
    "StagedRecord",
    "SyncRun",
]
