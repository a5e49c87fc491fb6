"""
Pydantic schemas for configuration, timelines and records.

Schemas:
    config: SyncConfig (job configuration) and WriteConfig (write client)
    table_schema: Record schema of source and target tables
    timeline: Instants, commit metadata and the completed commit timeline
    records: Prepared records and physical write outcomes
    result: Resume checkpoint and sync round result

Usage:
    from schemas.config import SyncConfig
    from schemas.records import PreparedRecord, WriteOutcome

Example:
    config = SyncConfig(
        target_table="events",
        target_base_path="/data/tables/events",
        filter_dupes=True,
    )

    # Dedup turns UPSERT into INSERT for the round, the original is untouched
    assert config.effective().operation == WriteOperation.INSERT
    assert config.operation == WriteOperation.UPSERT
"""

__all__ = [
    "SyncConfig",
    "WriteConfig",
    "SchemaField",
    "TableSchema",
    "Instant",
    "CommitMetadata",
    "Timeline",
    "TableMetadata",
    "TableDescription",
    "RecordKey",
    "PreparedRecord",
    "WriteStatus",
    "WriteOutcome",
    "ResumeCheckpoint",
    "CommitResult",
    "SyncRoundResult",
]
