"""
Pydantic schemas for sync job and write-client configuration
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
import sys

from models.base import TableType, WriteOperation
from schemas.table_schema import TableSchema


class SyncConfig(BaseModel):
    """
    Configuration of one delta sync job.

    Instances are immutable; per-round adjustments are derived with
    effective() and never written back.
    """

    # Target table
    target_table: str = Field(..., min_length=1, max_length=200)
    target_base_path: str = Field(..., min_length=1, max_length=500)
    table_type: TableType = TableType.COPY_ON_WRITE
    payload_class: str = "OverwriteWithLatestPayload"

    # Round behaviour
    operation: WriteOperation = WriteOperation.UPSERT
    source_limit: int = Field(sys.maxsize, gt=0)
    source_ordering_field: str = "ts"
    record_key_field: str = "id"
    partition_path_field: Optional[str] = None
    filter_dupes: bool = False
    commit_on_errors: bool = False
    checkpoint: Optional[str] = None
    transformer_class_names: List[str] = Field(default_factory=list)

    # Continuous mode / compaction
    continuous_mode: bool = False
    force_disable_compaction: bool = False
    min_sync_interval_seconds: int = Field(0, ge=0)

    # Catalog
    enable_catalog_sync: bool = False

    # Free-form properties for transformers and write-client overrides
    props: Dict[str, Any] = Field(default_factory=dict)
    write_props: Dict[str, Any] = Field(default_factory=dict)

    @validator("transformer_class_names", pre=True)
    def split_class_names(cls, v):
        """Accept a comma separated string of dotted class paths"""
        if v is None:
            return []
        if isinstance(v, str):
            return [c.strip() for c in v.split(",") if c.strip()]
        return v

    class Config:
        frozen = True

    def effective(self) -> "SyncConfig":
        """
        Derive the configuration a round actually runs with.

        Deduplicating within the batch replaces merge-on-write conflict
        resolution, so UPSERT becomes INSERT when filter_dupes is set.
        """
        if self.filter_dupes and self.operation == WriteOperation.UPSERT:
            return self.model_copy(update={"operation": WriteOperation.INSERT})
        return self

    def is_async_compaction_enabled(self) -> bool:
        return (
            self.continuous_mode
            and not self.force_disable_compaction
            and self.table_type == TableType.MERGE_ON_READ
        )

    def is_inline_compaction_enabled(self) -> bool:
        return (
            not self.continuous_mode
            and not self.force_disable_compaction
            and self.table_type == TableType.MERGE_ON_READ
        )

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        """Build a job configuration from process settings"""
        return cls(
            target_table=settings.SYNC_TARGET_TABLE,
            target_base_path=settings.SYNC_TARGET_BASE_PATH,
            table_type=TableType(settings.SYNC_TABLE_TYPE.upper()),
            payload_class=settings.SYNC_PAYLOAD_CLASS,
            operation=WriteOperation(settings.SYNC_OPERATION.upper()),
            source_limit=settings.SYNC_SOURCE_LIMIT,
            source_ordering_field=settings.SYNC_SOURCE_ORDERING_FIELD,
            record_key_field=settings.SYNC_RECORD_KEY_FIELD,
            partition_path_field=settings.SYNC_PARTITION_PATH_FIELD,
            filter_dupes=settings.SYNC_FILTER_DUPES,
            commit_on_errors=settings.SYNC_COMMIT_ON_ERRORS,
            checkpoint=settings.SYNC_CHECKPOINT,
            transformer_class_names=settings.SYNC_TRANSFORMER_CLASSES,
            continuous_mode=settings.SYNC_CONTINUOUS_MODE,
            force_disable_compaction=settings.SYNC_FORCE_DISABLE_COMPACTION,
            min_sync_interval_seconds=settings.SYNC_MIN_INTERVAL_SECONDS,
            enable_catalog_sync=settings.CATALOG_SYNC_ENABLED,
        )


class WriteConfig(BaseModel):
    """
    Configuration handed to the table store when building a write client.

    Defaults are the store's own defaults; the sync round overrides the
    ones it depends on and validates them after write_props are applied.
    """

    base_path: str
    table_name: str
    table_type: TableType = TableType.COPY_ON_WRITE
    payload_class: str = "OverwriteWithLatestPayload"

    auto_commit: bool = True
    combine_before_insert: bool = False
    combine_before_upsert: bool = True
    inline_compaction: bool = False

    write_schema: Optional[TableSchema] = None

    class Config:
        frozen = True
