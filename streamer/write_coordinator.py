"""
Write/commit protocol of a sync round.

The coordinator owns the write client, runs the two-phase write, decides
between commit and rollback from the error-record count, embeds the
checkpoint in the commit and triggers post-commit maintenance.
"""

from typing import Callable, Dict, List, Optional
import enum
import logging

from core.exceptions import (
    CommitFailedError,
    InstantStateError,
    RollbackError,
    WriteConfigError,
    WriteError,
    WriteErrorsExceededError,
)
from models.base import WriteOperation
from schemas.config import SyncConfig, WriteConfig
from schemas.records import PreparedRecord, WriteOutcome
from schemas.result import CommitResult
from streamer.catalog import CatalogSyncTrigger
from streamer.checkpoint import CHECKPOINT_KEY, CHECKPOINT_RESET_KEY
from streamer.retry import RetryPolicy
from streamer.schema_provider import SchemaProvider
from streamer.store.base import TableStore, WriteClient

logger = logging.getLogger(__name__)

ERROR_LOG_LIMIT = 100


class CommitState(str, enum.Enum):
    IDLE = "idle"
    COMMIT_STARTED = "commit_started"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def default_commit_retry_policy() -> RetryPolicy:
    """2 retries after the first attempt, 1 second apart, only for timeline races"""
    return RetryPolicy(max_attempts=3, delay_seconds=1.0, retry_on=(InstantStateError,))


class WriteCoordinator:
    """
    Production write path of a sync round.

    Responsibilities:
    - Build and validate the write configuration, create the write client once
    - Start commits with a bounded retry on transient timeline races
    - Dispatch to insert / upsert / bulk insert without committing
    - Commit with checkpoint metadata, or roll back and fail
    - Schedule async compaction and trigger catalog sync after a commit
    """

    def __init__(
        self,
        cfg: SyncConfig,
        table_store: TableStore,
        catalog_trigger: Optional[CatalogSyncTrigger] = None,
        commit_retry_policy: Optional[RetryPolicy] = None,
        on_write_client_initialized: Optional[Callable[[WriteClient], None]] = None,
        error_log_limit: int = ERROR_LOG_LIMIT
    ):
        self.cfg = cfg
        self.table_store = table_store
        self.catalog_trigger = catalog_trigger
        self.commit_retry_policy = commit_retry_policy or default_commit_retry_policy()
        self.on_write_client_initialized = on_write_client_initialized
        self.error_log_limit = error_log_limit

        self.state = CommitState.IDLE
        self._write_client: Optional[WriteClient] = None
        self._schema_provider: Optional[SchemaProvider] = None
        self._closed = False

    @property
    def write_client(self) -> Optional[WriteClient]:
        return self._write_client

    @property
    def schema_provider(self) -> Optional[SchemaProvider]:
        return self._schema_provider

    def is_initialized(self) -> bool:
        return self._write_client is not None

    # ------------------------------------------------------------------
    # Write client lifecycle
    # ------------------------------------------------------------------

    def build_write_config(self, schema_provider: Optional[SchemaProvider]) -> WriteConfig:
        """Write configuration the round depends on, with write_props applied on top"""
        values = {
            "base_path": self.cfg.target_base_path,
            "table_name": self.cfg.target_table,
            "table_type": self.cfg.table_type,
            "payload_class": self.cfg.payload_class,
            "auto_commit": False,
            "combine_before_insert": self.cfg.filter_dupes,
            "combine_before_upsert": True,
            "inline_compaction": self.cfg.is_inline_compaction_enabled(),
            "write_schema": schema_provider.write_schema() if schema_provider is not None else None,
        }
        values.update(self.cfg.write_props)
        write_config = WriteConfig(**values)
        self.validate_write_config(write_config)
        return write_config

    def validate_write_config(self, write_config: WriteConfig) -> None:
        """
        Raises:
            WriteConfigError: The write configuration breaks an assumption of
                the commit protocol
        """
        checks = [
            ("inline_compaction", self.cfg.is_inline_compaction_enabled(), write_config.inline_compaction),
            ("auto_commit", False, write_config.auto_commit),
            ("combine_before_insert", self.cfg.filter_dupes, write_config.combine_before_insert),
            ("combine_before_upsert", True, write_config.combine_before_upsert),
        ]
        for setting, expected, actual in checks:
            if expected != actual:
                raise WriteConfigError(
                    f"Write config {setting} must be {expected}",
                    context={"setting": setting, "expected": expected, "actual": actual}
                )

    def ensure_initialized(
        self,
        schema_provider: Optional[SchemaProvider],
        allow_missing_schema: bool = False
    ) -> Optional[WriteClient]:
        """
        Create the write client once a schema provider is known.

        The first schema provider seen is kept for the life of the
        coordinator; later calls return the existing client. With
        allow_missing_schema the client is built without a write schema
        when no provider is known.
        """
        if self._closed:
            raise WriteError(
                "Write coordinator is closed",
                context={"table_name": self.cfg.target_table}
            )
        if self._write_client is not None:
            return self._write_client
        if schema_provider is None and not allow_missing_schema:
            return None

        logger.info("Setting up write client")
        write_config = self.build_write_config(schema_provider)
        self._schema_provider = schema_provider
        self._write_client = self.table_store.create_write_client(write_config)
        if self.on_write_client_initialized is not None:
            self.on_write_client_initialized(self._write_client)
        return self._write_client

    async def close(self) -> None:
        """Release the write client; calling it again is a no-op"""
        if self._write_client is not None:
            logger.info("Closing write client")
            client = self._write_client
            self._write_client = None
            await client.close()
        self._closed = True

    def _require_client(self) -> WriteClient:
        if self._write_client is None:
            raise WriteError(
                "Write client has not been set up, schema provider unknown",
                context={"table_name": self.cfg.target_table}
            )
        return self._write_client

    # ------------------------------------------------------------------
    # Commit protocol
    # ------------------------------------------------------------------

    async def start_commit(self) -> str:
        client = self._require_client()
        return await self.commit_retry_policy.run(client.start_commit, description="start a new commit")

    async def _dispatch(
        self,
        client: WriteClient,
        operation: WriteOperation,
        records: List[PreparedRecord],
        instant_time: str
    ) -> WriteOutcome:
        if operation == WriteOperation.INSERT:
            return await client.insert(records, instant_time)
        elif operation == WriteOperation.UPSERT:
            return await client.upsert(records, instant_time)
        elif operation == WriteOperation.BULK_INSERT:
            return await client.bulk_insert(records, instant_time)
        raise WriteError(f"Unknown operation :{operation}", context={"operation": str(operation)})

    async def write(
        self,
        records: List[PreparedRecord],
        checkpoint: str,
        reset_marker: Optional[str] = None,
        operation: Optional[WriteOperation] = None
    ) -> CommitResult:
        """
        Write one batch and commit it together with its checkpoint.

        Args:
            records: Prepared (and possibly deduplicated) records, may be empty
            checkpoint: Checkpoint to resume from after this commit
            reset_marker: User override to record on the commit
            operation: Effective operation for the round

        Returns:
            CommitResult of the completed instant

        Raises:
            WriteErrorsExceededError: Error records present and commit_on_errors
                is off; the instant was rolled back
            CommitFailedError: The store reported a failed commit
            RollbackError: Rolling back the instant failed
        """
        client = self._require_client()
        operation = operation or self.cfg.effective().operation
        is_empty = len(records) == 0

        self.state = CommitState.IDLE
        instant_time = await self.start_commit()
        self.state = CommitState.COMMIT_STARTED
        logger.info(f"Starting commit  : {instant_time}")

        try:
            outcome = await self._dispatch(client, operation, records, instant_time)
        except Exception as e:
            logger.error(f"Write for instant {instant_time} failed, rolling back: {e}")
            await self._rollback(instant_time, write_failure=e)
            raise

        total_errors = outcome.total_error_records
        total = outcome.total_records
        has_errors = total_errors > 0

        if has_errors and not self.cfg.commit_on_errors:
            logger.error(f"Delta sync found errors when writing. Errors/Total={total_errors}/{total}")
            self._log_errors(outcome)
            failure = WriteErrorsExceededError(
                f"Commit {instant_time} failed and rolled-back !",
                context={
                    "instant_time": instant_time,
                    "total_records": total,
                    "total_error_records": total_errors
                }
            )
            await self._rollback(instant_time, write_failure=failure)
            raise failure

        if has_errors:
            logger.warning(
                "Some records failed to be merged but forcing commit since commit_on_errors set. "
                f"Errors/Total={total_errors}/{total}"
            )

        metadata: Dict[str, str] = {CHECKPOINT_KEY: checkpoint}
        if reset_marker is not None:
            metadata[CHECKPOINT_RESET_KEY] = reset_marker

        if not await client.commit(instant_time, outcome, metadata):
            logger.info(f"Commit {instant_time} failed!")
            raise CommitFailedError(
                f"Commit {instant_time} failed!",
                context={"instant_time": instant_time, "checkpoint": checkpoint}
            )

        self.state = CommitState.COMMITTED
        logger.info(f"Commit {instant_time} successful!")

        scheduled_compaction = None
        if self.cfg.is_async_compaction_enabled():
            scheduled_compaction = await self._schedule_compaction()

        catalog_sync_error = None
        if not is_empty and self.catalog_trigger is not None:
            catalog_sync_error = await self.catalog_trigger.sync()

        return CommitResult(
            instant_time=instant_time,
            total_records=total,
            total_error_records=total_errors,
            scheduled_compaction=scheduled_compaction,
            catalog_sync_error=catalog_sync_error
        )

    async def _rollback(self, instant_time: str, write_failure: Exception) -> None:
        client = self._require_client()
        try:
            rolled_back = await client.rollback(instant_time)
        except Exception as e:
            raise RollbackError(
                f"Rollback of {instant_time} failed",
                context={"instant_time": instant_time, "write_failure": str(write_failure)},
                original_exception=e
            )
        if not rolled_back:
            raise RollbackError(
                f"Rollback of {instant_time} was refused by the table store",
                context={"instant_time": instant_time, "write_failure": str(write_failure)}
            )
        self.state = CommitState.ROLLED_BACK
        logger.info(f"Rolled back instant {instant_time}")

    def _log_errors(self, outcome: WriteOutcome) -> None:
        logger.error(f"Printing out the top {self.error_log_limit} errors")
        logged = 0
        for status in outcome.error_statuses():
            if logged >= self.error_log_limit:
                break
            if status.global_error:
                logger.error(f"Global error : {status.global_error}")
            for key, error in status.errors.items():
                if logged >= self.error_log_limit:
                    break
                logger.error(f"Error for key:{key} is {error}")
                logged += 1

    async def _schedule_compaction(self) -> Optional[str]:
        """Failures here do not undo the commit; they are logged and dropped"""
        try:
            instant = await self._require_client().schedule_compaction()
        except Exception as e:
            logger.warning(f"Scheduling compaction failed after a successful commit: {e}", exc_info=True)
            return None
        if instant is not None:
            logger.info(f"Scheduled compaction at instant {instant}")
        return instant
