"""
Delta sync components: read new data, transform it and commit it to a
target table together with the checkpoint to resume from.

Modules:
    checkpoint: Resolve the resume checkpoint from the commit timeline
    keygen: Record key and partition path generation
    preparer: Keyed record preparation and in-batch deduplication
    transformers: DataFrame transformers applied between read and write
    schema_provider: Source / target schema resolution
    retry: Bounded retry policy for transient failures
    write_coordinator: Two-phase write, commit and rollback protocol
    catalog: Post-commit catalog synchronisation
    recorder: Audit trail of sync rounds
    sync_round: Round driver composing all of the above
    scheduler: APScheduler integration for continuous mode

Subpackages:
    sources: Source interface, format adapter, CSV directory and HTTP JSON sources
    store: Table store / write client interface and the Postgres implementation

Architecture:
    Every round follows the same sequence:

    1. Resolve - Find the checkpoint of the last completed commit
    2. Read - Pull data newer than the checkpoint, bounded by source_limit
    3. Prepare - Transform, key and optionally deduplicate records
    4. Commit - Write without committing, then commit data and checkpoint
       atomically, or roll back when error records are not tolerated

    A round is all or nothing; retrying a failed round resumes from the
    same checkpoint.

Usage:
    from streamer.sync_round import SyncRound
    from streamer.sources.csv_source import CsvDirectorySource
    from streamer.store.postgres import PostgresTableStore

Example:
    sync_round = SyncRound(
        cfg=SyncConfig(target_table="events", target_base_path="/tables/events"),
        source=CsvDirectorySource("events", "/data/incoming"),
        table_store=PostgresTableStore(session_maker),
    )

    result = await sync_round.run_once()
    print(f"{result.status.value}: checkpoint={result.checkpoint}")
    await sync_round.close()
"""

__all__ = [
    "CheckpointResolver",
    "RecordPreparer",
    "DedupFilter",
    "WriteCoordinator",
    "CatalogSyncTrigger",
    "SyncRound",
    "SyncScheduler",
]
