from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class TableType(str, enum.Enum):
    """Storage layout of a target table"""
    COPY_ON_WRITE = "COPY_ON_WRITE"
    MERGE_ON_READ = "MERGE_ON_READ"


class WriteOperation(str, enum.Enum):
    """Physical write path"""
    INSERT = "INSERT"
    UPSERT = "UPSERT"
    BULK_INSERT = "BULK_INSERT"


class InstantAction(str, enum.Enum):
    """Kind of transaction recorded on the timeline"""
    COMMIT = "commit"
    DELTA_COMMIT = "deltacommit"
    COMPACTION = "compaction"


class InstantState(str, enum.Enum):
    """Lifecycle state of a timeline instant"""
    REQUESTED = "requested"
    INFLIGHT = "inflight"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class SyncStatus(str, enum.Enum):
    """Sync round status"""
    RUNNING = "running"
    COMMITTED = "committed"
    NO_NEW_DATA = "no_new_data"
    FAILED = "failed"
