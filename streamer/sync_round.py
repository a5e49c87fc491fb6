"""
Sync round driver.

One round reads everything new since the last committed checkpoint,
transforms it, keys it, optionally deduplicates it and commits it to the
target table together with the checkpoint to resume from next time.

Rounds are either fully committed (data and checkpoint) or leave nothing
behind; a crashed or failed round is simply retried from the same place.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

import pandas as pd

from core.exceptions import CheckpointError, SyncException
from models.base import SyncStatus
from schemas.config import SyncConfig
from schemas.records import PreparedRecord
from schemas.result import ResumeCheckpoint, SyncRoundResult
from schemas.timeline import Timeline
from streamer.catalog import CatalogSyncTrigger
from streamer.checkpoint import CheckpointResolver
from streamer.keygen import KeyGenerator, create_key_generator
from streamer.preparer import DedupFilter, RecordPreparer
from streamer.recorder import RunRecorder
from streamer.retry import RetryPolicy
from streamer.schema_provider import RowBasedSchemaProvider, SchemaProvider
from streamer.sources.base import Source, SourceFormat, SourceFormatAdapter, frame_to_records
from streamer.store.base import TableStore, WriteClient
from streamer.transformers import Transformer, load_transformers
from streamer.write_coordinator import WriteCoordinator

logger = logging.getLogger(__name__)

# (schema provider, checkpoint for next batch, prepared records)
SourceRead = Tuple[Optional[SchemaProvider], str, List[PreparedRecord]]


class RoundCache:
    """Intermediate results held for the duration of one round"""

    def __init__(self):
        self._entries: List[Any] = []

    def hold(self, value: Any) -> Any:
        if value is not None:
            self._entries.append(value)
        return value

    def __len__(self) -> int:
        return len(self._entries)

    def release(self) -> None:
        if self._entries:
            logger.debug(f"Releasing {len(self._entries)} cached round results")
        self._entries.clear()


class SyncRound:
    """
    Orchestrates checkpoint resolution, source read, transform, record
    preparation and the write/commit protocol for one target table.

    The read shape (rows or records) is chosen once: rows when a
    transformer is configured, records otherwise. The schema provider is
    fixed by the user or by the first batch and never changes afterwards.
    """

    def __init__(
        self,
        cfg: SyncConfig,
        source: Source,
        table_store: TableStore,
        schema_provider: Optional[SchemaProvider] = None,
        transformer: Optional[Transformer] = None,
        key_generator: Optional[KeyGenerator] = None,
        catalog_trigger: Optional[CatalogSyncTrigger] = None,
        run_recorder: Optional[RunRecorder] = None,
        commit_retry_policy: Optional[RetryPolicy] = None,
        on_write_client_initialized: Optional[Callable[[WriteClient], None]] = None
    ):
        self.cfg = cfg
        self.table_store = table_store
        self.format_adapter = SourceFormatAdapter(source)
        self.transformer = transformer if transformer is not None else load_transformers(cfg.transformer_class_names)
        self.read_format = SourceFormat.ROW if self.transformer is not None else SourceFormat.RECORD
        self.key_generator = key_generator or create_key_generator(
            cfg.record_key_field,
            cfg.partition_path_field,
            cfg.props
        )
        self.preparer = RecordPreparer(self.key_generator, cfg.source_ordering_field)
        self.dedup_filter = DedupFilter()
        self.resolver = CheckpointResolver()
        self.run_recorder = run_recorder
        self.user_schema_provider = schema_provider

        if catalog_trigger is None and cfg.enable_catalog_sync:
            logger.warning("Catalog sync enabled but no catalog sync tool configured")

        self.write_coordinator = WriteCoordinator(
            cfg,
            table_store,
            catalog_trigger=catalog_trigger if cfg.enable_catalog_sync else None,
            commit_retry_policy=commit_retry_policy,
            on_write_client_initialized=on_write_client_initialized
        )

        self.timeline: Optional[Timeline] = None
        self._round_cache = RoundCache()

        logger.info(f"Creating delta sync for table {cfg.target_table} with read format {self.read_format.value}")

        # A user schema is known up front, so the write client need not wait for data
        if schema_provider is not None:
            self.write_coordinator.ensure_initialized(schema_provider)

    @property
    def schema_provider(self) -> Optional[SchemaProvider]:
        return self.write_coordinator.schema_provider

    async def refresh_timeline(self) -> Optional[Timeline]:
        """
        Load the completed commit timeline of the target table.

        The table is initialised when it has no metadata yet, in which case
        there is no timeline to resume from.
        """
        base_path = self.cfg.target_base_path
        if await self.table_store.metadata_exists(base_path):
            metadata = await self.table_store.open_metadata(base_path)
            if metadata.table_type != self.cfg.table_type:
                logger.warning(
                    f"Table {base_path} is {metadata.table_type.value} "
                    f"but sync configured for {self.cfg.table_type.value}"
                )
            self.timeline = metadata.timeline
        else:
            logger.info(f"Initializing table {self.cfg.target_table} at {base_path}")
            await self.table_store.init_table(
                base_path,
                self.cfg.table_type,
                self.cfg.target_table,
                self.cfg.payload_class
            )
            self.timeline = None
        return self.timeline

    async def run_once(self) -> SyncRoundResult:
        """
        Run one sync round.

        Returns:
            SyncRoundResult with status COMMITTED or NO_NEW_DATA

        Raises:
            MissingCheckpointError: Table history has no resume checkpoint
            CheckpointError: Source lost its checkpoint after a resume
            WriteErrorsExceededError: Error records present, round rolled back
            CommitFailedError / RollbackError: The commit protocol failed
            SourceError / TransformationError: Reading or preparing data failed
        """
        handle = None
        if self.run_recorder is not None:
            handle = await self.run_recorder.start(self.cfg.target_table)

        resume: Optional[ResumeCheckpoint] = None
        try:
            try:
                timeline = await self.refresh_timeline()
                resume = self.resolver.resolve(timeline, self.cfg.checkpoint)
                result = await self._sync(resume)
            finally:
                self._round_cache.release()

        except Exception as e:
            if isinstance(e, SyncException):
                logger.error(
                    f"Sync round failed for {self.cfg.target_table}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
            else:
                logger.exception(f"Unexpected error in sync round for {self.cfg.target_table}")
            await self._record_failure(handle, e, resume.value if resume is not None else None)
            raise

        await self._record_success(handle, result)
        return result

    async def _sync(self, resume: ResumeCheckpoint) -> SyncRoundResult:
        cfg = self.cfg.effective()

        # --------------------------------------------------
        # PHASE 1: READ (AND TRANSFORM)
        # --------------------------------------------------
        read = await self.read_from_source(resume)
        if read is None:
            return SyncRoundResult(
                status=SyncStatus.NO_NEW_DATA,
                table_name=cfg.target_table,
                resumed_from=resume.value,
                checkpoint=resume.value,
                checkpoint_reset=resume.reset_marker
            )

        schema_provider, checkpoint, records = read

        # --------------------------------------------------
        # PHASE 2: WRITE CLIENT SETUP
        # --------------------------------------------------
        if not self.write_coordinator.is_initialized():
            if schema_provider is None:
                logger.warning(f"No schema known for {cfg.target_table}, setting up write client without a write schema")
            self.write_coordinator.ensure_initialized(schema_provider, allow_missing_schema=True)

        # --------------------------------------------------
        # PHASE 3: DEDUP
        # --------------------------------------------------
        if cfg.filter_dupes and records:
            records = self._round_cache.hold(self.dedup_filter.filter(records))

        # --------------------------------------------------
        # PHASE 4: WRITE AND COMMIT
        # --------------------------------------------------
        if not records:
            logger.info("No new data, perform empty commit.")

        commit = await self.write_coordinator.write(
            records,
            checkpoint,
            reset_marker=resume.reset_marker,
            operation=cfg.operation
        )

        logger.info(
            f"Sync round committed {commit.instant_time} for {cfg.target_table}: "
            f"Records={commit.total_records}, Errors={commit.total_error_records}, "
            f"Checkpoint={checkpoint}"
        )

        return SyncRoundResult(
            status=SyncStatus.COMMITTED,
            table_name=cfg.target_table,
            resumed_from=resume.value,
            checkpoint=checkpoint,
            checkpoint_reset=resume.reset_marker,
            instant_time=commit.instant_time,
            total_records=commit.total_records,
            total_error_records=commit.total_error_records,
            scheduled_compaction=commit.scheduled_compaction,
            catalog_sync_error=commit.catalog_sync_error
        )

    async def read_from_source(self, resume: ResumeCheckpoint) -> Optional[SourceRead]:
        """
        Read new data from the source and prepare it for writing.

        Returns:
            None when the source checkpoint did not move, otherwise the
            schema provider for the batch, the checkpoint for the next
            batch and the prepared records (possibly empty)

        Raises:
            CheckpointError: Source returned no checkpoint after resuming
                from one
        """
        if self.read_format == SourceFormat.ROW:
            schema_provider, checkpoint, rows = await self._read_rows(resume)
        else:
            schema_provider, checkpoint, rows = await self._read_records(resume)

        if checkpoint == resume.value:
            logger.info(f"No new data, source checkpoint has not changed. Nothing to commit. Old checkpoint=({resume.value})")
            return None

        if checkpoint is None:
            raise CheckpointError(
                "Source returned no checkpoint after resuming from one",
                context={"resumed_from": resume.value, "table_name": self.cfg.target_table}
            )

        if not rows:
            return schema_provider, checkpoint, []

        prepared = self._round_cache.hold(self.preparer.prepare_all(rows))
        return schema_provider, checkpoint, prepared

    async def _read_rows(self, resume: ResumeCheckpoint) -> Tuple[Optional[SchemaProvider], Optional[str], Optional[List[Dict[str, Any]]]]:
        input_batch = await self.format_adapter.fetch_new_data_in_row_format(resume.value, self.cfg.source_limit)
        checkpoint = input_batch.checkpoint_for_next_batch

        frame: Optional[pd.DataFrame] = self._round_cache.hold(input_batch.batch)
        transformed = None
        if frame is not None:
            transformed = self._round_cache.hold(self.transformer.apply(frame, self.cfg.props))

        user_target = self.user_schema_provider.target_schema if self.user_schema_provider is not None else None
        if user_target is not None:
            schema_provider = self.user_schema_provider
            if transformed is not None:
                transformed = transformed.reindex(columns=user_target.field_names())
        elif transformed is not None:
            schema_provider = RowBasedSchemaProvider(transformed, name=self.cfg.target_table)
        else:
            schema_provider = input_batch.schema_provider

        rows = self._round_cache.hold(frame_to_records(transformed)) if transformed is not None else None
        return self._pick_schema_provider(schema_provider), checkpoint, rows

    async def _read_records(self, resume: ResumeCheckpoint) -> Tuple[Optional[SchemaProvider], Optional[str], Optional[List[Dict[str, Any]]]]:
        input_batch = await self.format_adapter.fetch_new_data_in_record_format(resume.value, self.cfg.source_limit)
        rows = self._round_cache.hold(input_batch.batch)
        return self._pick_schema_provider(input_batch.schema_provider), input_batch.checkpoint_for_next_batch, rows

    def _pick_schema_provider(self, batch_provider: Optional[SchemaProvider]) -> Optional[SchemaProvider]:
        if self.user_schema_provider is not None:
            return self.user_schema_provider
        return batch_provider

    async def _record_success(self, handle: Any, result: SyncRoundResult) -> None:
        if self.run_recorder is None:
            return
        try:
            await self.run_recorder.complete(handle, result)
        except Exception as record_error:
            # The commit has landed; the round still succeeded
            logger.error(f"Failed to record sync round {result.instant_time}: {record_error}")

    async def _record_failure(self, handle: Any, error: Exception, checkpoint_before: Optional[str]) -> None:
        if self.run_recorder is None:
            return
        try:
            await self.run_recorder.fail(handle, error, checkpoint_before)
        except Exception as record_error:
            # The round's own failure is what the caller sees
            logger.error(f"Failed to record sync round failure: {record_error}")

    async def close(self) -> None:
        """Release the write client; the round cannot be run afterwards"""
        await self.write_coordinator.close()
