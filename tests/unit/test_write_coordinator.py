"""
Unit tests for the write/commit protocol
"""

from unittest.mock import AsyncMock, Mock

import pytest

from core.exceptions import (
    CommitFailedError,
    InstantStateError,
    NonRetryableError,
    RollbackError,
    SourceReadError,
    WriteConfigError,
    WriteError,
    WriteErrorsExceededError,
)
from models.base import TableType, WriteOperation
from schemas.records import PreparedRecord, RecordKey
from schemas.table_schema import SchemaField, TableSchema
from streamer.catalog import CatalogSyncTrigger
from streamer.checkpoint import CHECKPOINT_KEY, CHECKPOINT_RESET_KEY
from streamer.retry import RetryPolicy
from streamer.schema_provider import FixedSchemaProvider
from streamer.write_coordinator import CommitState, WriteCoordinator, default_commit_retry_policy


SCHEMA = FixedSchemaProvider(TableSchema(name="events", fields=[SchemaField(name="id", nullable=False)]))


def records(count):
    return [
        PreparedRecord(key=RecordKey(record_key=f"k{i}"), ordering_value=i, payload={"id": f"k{i}", "ts": i})
        for i in range(count)
    ]


@pytest.fixture
def make_coordinator(table_store, make_config, no_sleep):
    def _make(catalog_trigger=None, on_init=None, **cfg_overrides):
        coordinator = WriteCoordinator(
            make_config(**cfg_overrides),
            table_store,
            catalog_trigger=catalog_trigger,
            commit_retry_policy=RetryPolicy(3, 1.0, (InstantStateError,), sleep=no_sleep),
            on_write_client_initialized=on_init
        )
        coordinator.ensure_initialized(SCHEMA)
        return coordinator
    return _make


class TestWriteConfig:
    """Test write configuration invariants"""

    def test_built_config_satisfies_invariants(self, make_coordinator, table_store):
        make_coordinator(filter_dupes=True)

        config = table_store.write_configs[0]
        assert config.auto_commit is False
        assert config.combine_before_upsert is True
        assert config.combine_before_insert is True
        assert config.inline_compaction is False
        assert config.write_schema.name == "events"

    def test_inline_compaction_tracks_mode(self, make_coordinator, table_store):
        make_coordinator(table_type=TableType.MERGE_ON_READ)
        assert table_store.write_configs[0].inline_compaction is True

    def test_continuous_mor_uses_async_compaction(self, make_coordinator, table_store):
        make_coordinator(table_type=TableType.MERGE_ON_READ, continuous_mode=True)
        assert table_store.write_configs[0].inline_compaction is False

    @pytest.mark.parametrize("write_props,setting", [
        ({"auto_commit": True}, "auto_commit"),
        ({"combine_before_upsert": False}, "combine_before_upsert"),
        ({"combine_before_insert": True}, "combine_before_insert"),
        ({"inline_compaction": True}, "inline_compaction"),
    ])
    def test_violations_rejected_at_construction(self, table_store, make_config, write_props, setting):
        coordinator = WriteCoordinator(make_config(write_props=write_props), table_store)

        with pytest.raises(WriteConfigError) as exc_info:
            coordinator.ensure_initialized(SCHEMA)

        assert exc_info.value.context["setting"] == setting
        assert not coordinator.is_initialized()
        assert table_store.write_configs == []

    def test_configuration_errors_are_not_retryable(self):
        assert issubclass(WriteConfigError, NonRetryableError)


class TestWriteClientLifecycle:
    """Test lazy construction and shutdown"""

    def test_not_initialized_without_schema(self, table_store, make_config):
        coordinator = WriteCoordinator(make_config(), table_store)

        assert coordinator.ensure_initialized(None) is None
        assert not coordinator.is_initialized()

    def test_client_built_without_schema_when_allowed(self, table_store, make_config):
        coordinator = WriteCoordinator(make_config(), table_store)

        client = coordinator.ensure_initialized(None, allow_missing_schema=True)

        assert client is table_store.clients[0]
        assert table_store.write_configs[0].write_schema is None
        assert coordinator.schema_provider is None

    def test_client_built_once(self, make_coordinator, table_store):
        callback = Mock()
        coordinator = make_coordinator(on_init=callback)
        other_schema = FixedSchemaProvider(TableSchema(name="other"))

        client = coordinator.ensure_initialized(other_schema)

        assert client is table_store.clients[0]
        assert len(table_store.clients) == 1
        assert coordinator.schema_provider is SCHEMA
        callback.assert_called_once_with(client)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_coordinator, table_store):
        coordinator = make_coordinator()

        await coordinator.close()
        await coordinator.close()

        assert table_store.clients[0].closed
        assert not coordinator.is_initialized()
        with pytest.raises(WriteError):
            coordinator.ensure_initialized(SCHEMA)

    @pytest.mark.asyncio
    async def test_write_without_client(self, table_store, make_config):
        coordinator = WriteCoordinator(make_config(), table_store)
        with pytest.raises(WriteError):
            await coordinator.write(records(1), "ck1")


class TestCommitStart:
    """Test the bounded commit-start retry"""

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, make_coordinator, table_store, no_sleep):
        coordinator = make_coordinator()
        table_store.start_commit_failures = [InstantStateError("race"), InstantStateError("race")]

        result = await coordinator.write(records(1), "ck1")

        assert result.instant_time is not None
        assert table_store.start_commit_calls == 3
        assert no_sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.start_commit_failures = [InstantStateError("race") for _ in range(3)]

        with pytest.raises(InstantStateError):
            await coordinator.write(records(1), "ck1")

        assert table_store.start_commit_calls == 3
        assert table_store.instants == []

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.start_commit_failures = [RuntimeError("disk full")]

        with pytest.raises(RuntimeError):
            await coordinator.write(records(1), "ck1")

        assert table_store.start_commit_calls == 1

    def test_default_policy(self):
        policy = default_commit_retry_policy()
        assert policy.max_attempts == 3
        assert policy.delay_seconds == 1.0
        assert policy.retry_on == (InstantStateError,)


class TestCommitDecision:
    """Test commit vs rollback"""

    @pytest.mark.asyncio
    async def test_clean_batch_committed_with_checkpoint(self, make_coordinator, table_store):
        coordinator = make_coordinator()

        result = await coordinator.write(records(3), "ck1")

        assert coordinator.state == CommitState.COMMITTED
        assert result.total_records == 3
        assert result.total_error_records == 0
        assert result.scheduled_compaction is None
        assert table_store.last_metadata() == {CHECKPOINT_KEY: "ck1"}
        assert len(table_store.records) == 3

    @pytest.mark.asyncio
    async def test_reset_marker_recorded(self, make_coordinator, table_store):
        coordinator = make_coordinator()

        await coordinator.write(records(1), "ck2", reset_marker="ck2")

        assert table_store.last_metadata() == {CHECKPOINT_KEY: "ck2", CHECKPOINT_RESET_KEY: "ck2"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", list(WriteOperation))
    async def test_dispatch_by_operation(self, make_coordinator, table_store, operation):
        coordinator = make_coordinator()

        await coordinator.write(records(2), "ck1", operation=operation)

        assert table_store.clients[0].writes[0]["operation"] == operation

    @pytest.mark.asyncio
    async def test_errors_roll_back_and_fail(self, make_coordinator, table_store, caplog):
        coordinator = make_coordinator()
        table_store.error_keys = {"k1"}

        with pytest.raises(WriteErrorsExceededError) as exc_info:
            await coordinator.write(records(3), "ck1")

        assert coordinator.state == CommitState.ROLLED_BACK
        assert exc_info.value.context["total_error_records"] == 1
        assert table_store.instants == []
        assert table_store.records == {}
        assert table_store.inflight == []
        assert "Error for key:k1" in caplog.text

    @pytest.mark.asyncio
    async def test_error_logging_capped(self, table_store, make_config, caplog):
        coordinator = WriteCoordinator(make_config(), table_store, error_log_limit=5)
        coordinator.ensure_initialized(SCHEMA)
        table_store.error_keys = {f"k{i}" for i in range(20)}

        with pytest.raises(WriteErrorsExceededError):
            await coordinator.write(records(20), "ck1")

        assert caplog.text.count("Error for key:") == 5

    @pytest.mark.asyncio
    async def test_commit_on_errors(self, make_coordinator, table_store, caplog):
        coordinator = make_coordinator(commit_on_errors=True)
        table_store.error_keys = {"k0"}

        result = await coordinator.write(records(2), "ck1")

        assert result.total_error_records == 1
        assert coordinator.state == CommitState.COMMITTED
        assert table_store.last_metadata()[CHECKPOINT_KEY] == "ck1"
        assert "forcing commit" in caplog.text

    @pytest.mark.asyncio
    async def test_commit_failure(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.commit_succeeds = False

        with pytest.raises(CommitFailedError):
            await coordinator.write(records(1), "ck1")

        assert table_store.clients[0].rolled_back == []

    @pytest.mark.asyncio
    async def test_write_exception_rolls_back(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.write_exception = SourceReadError("executor lost")

        with pytest.raises(SourceReadError):
            await coordinator.write(records(1), "ck1")

        assert len(table_store.clients[0].rolled_back) == 1

    @pytest.mark.asyncio
    async def test_rollback_failure_is_fatal(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.error_keys = {"k0"}
        table_store.rollback_exception = RuntimeError("store unavailable")

        with pytest.raises(RollbackError) as exc_info:
            await coordinator.write(records(1), "ck1")

        assert isinstance(exc_info.value.original_exception, RuntimeError)
        assert "failed and rolled-back" in exc_info.value.context["write_failure"]

    @pytest.mark.asyncio
    async def test_rollback_refused_is_fatal(self, make_coordinator, table_store):
        coordinator = make_coordinator()
        table_store.error_keys = {"k0"}
        table_store.rollback_succeeds = False

        with pytest.raises(RollbackError):
            await coordinator.write(records(1), "ck1")


class TestPostCommit:
    """Test compaction scheduling and catalog sync"""

    @pytest.mark.asyncio
    async def test_async_compaction_scheduled(self, make_coordinator, table_store):
        coordinator = make_coordinator(table_type=TableType.MERGE_ON_READ, continuous_mode=True)

        result = await coordinator.write(records(1), "ck1")

        assert result.scheduled_compaction is not None
        assert table_store.compaction_requests == 1

    @pytest.mark.asyncio
    async def test_no_compaction_outside_async_mode(self, make_coordinator, table_store):
        coordinator = make_coordinator(table_type=TableType.MERGE_ON_READ)

        result = await coordinator.write(records(1), "ck1")

        assert result.scheduled_compaction is None
        assert table_store.compaction_requests == 0

    @pytest.mark.asyncio
    async def test_compaction_failure_keeps_commit(self, make_coordinator, table_store):
        coordinator = make_coordinator(table_type=TableType.MERGE_ON_READ, continuous_mode=True)
        table_store.compaction_exception = RuntimeError("timeline busy")

        result = await coordinator.write(records(1), "ck1")

        assert result.scheduled_compaction is None
        assert coordinator.state == CommitState.COMMITTED
        assert len(table_store.instants) == 1

    @pytest.mark.asyncio
    async def test_catalog_sync_after_non_empty_commit(self, make_coordinator):
        trigger = Mock(spec=CatalogSyncTrigger)
        trigger.sync = AsyncMock(return_value=None)
        coordinator = make_coordinator(catalog_trigger=trigger)

        await coordinator.write(records(1), "ck1")

        trigger.sync.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_commit_skips_catalog_sync(self, make_coordinator, table_store):
        trigger = Mock(spec=CatalogSyncTrigger)
        trigger.sync = AsyncMock(return_value=None)
        coordinator = make_coordinator(catalog_trigger=trigger)

        result = await coordinator.write([], "ck2")

        trigger.sync.assert_not_awaited()
        assert result.total_records == 0
        assert table_store.last_metadata() == {CHECKPOINT_KEY: "ck2"}

    @pytest.mark.asyncio
    async def test_catalog_failure_surfaced_not_raised(self, make_coordinator):
        trigger = Mock(spec=CatalogSyncTrigger)
        trigger.sync = AsyncMock(return_value="Catalog sync failed")
        coordinator = make_coordinator(catalog_trigger=trigger)

        result = await coordinator.write(records(1), "ck1")

        assert result.catalog_sync_error == "Catalog sync failed"
