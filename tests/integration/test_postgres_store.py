"""
Integration tests for the Postgres table store (need TEST_DATABASE_URL)
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from core.exceptions import InstantStateError, TableStoreError
from models.base import InstantAction, InstantState, SyncStatus, TableType, WriteOperation
from models.instant import TableInstant
from models.record import StagedRecord, TableRecord
from models.sync_run import SyncRun
from schemas.config import WriteConfig
from schemas.records import PreparedRecord, RecordKey, WriteOutcome
from schemas.result import SyncRoundResult
from schemas.table_schema import SchemaField, TableSchema
from streamer.checkpoint import CHECKPOINT_KEY
from streamer.recorder import PostgresRunRecorder
from streamer.store.postgres import PostgresTableStore, new_instant_time

BASE_PATH = "/tables/events"


def record(key, ts, partition="", **payload):
    return PreparedRecord(
        key=RecordKey(record_key=key, partition_path=partition),
        ordering_value=ts,
        payload={"id": key, "ts": ts, **payload}
    )


@pytest_asyncio.fixture
async def store(session_maker):
    store = PostgresTableStore(session_maker)
    await store.init_table(BASE_PATH, TableType.COPY_ON_WRITE, "events", "OverwriteWithLatestPayload")
    return store


def client_for(store, **overrides):
    values = {
        "base_path": BASE_PATH,
        "table_name": "events",
        "auto_commit": False,
        "write_schema": TableSchema(name="events", fields=[SchemaField(name="id", nullable=False)]),
    }
    values.update(overrides)
    return store.create_write_client(WriteConfig(**values))


async def visible_records(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(TableRecord).where(TableRecord.base_path == BASE_PATH))
        return {r.record_key: r.payload for r in result.scalars().all()}


def test_instant_time_format():
    instant_time = new_instant_time()
    assert len(instant_time) == 17
    assert instant_time.isdigit()


@pytest.mark.asyncio
async def test_table_initialization(session_maker):
    store = PostgresTableStore(session_maker)
    assert not await store.metadata_exists(BASE_PATH)

    await store.init_table(BASE_PATH, TableType.MERGE_ON_READ, "events", "OverwriteWithLatestPayload")
    # Second init is a no-op
    await store.init_table(BASE_PATH, TableType.MERGE_ON_READ, "events", "OverwriteWithLatestPayload")

    metadata = await store.open_metadata(BASE_PATH)
    assert metadata.table_type == TableType.MERGE_ON_READ
    assert metadata.timeline.is_empty()


@pytest.mark.asyncio
async def test_open_missing_table(session_maker):
    with pytest.raises(TableStoreError):
        await PostgresTableStore(session_maker).open_metadata("/nowhere")


@pytest.mark.asyncio
async def test_write_is_invisible_until_commit(store, session_maker):
    client = client_for(store)
    instant_time = await client.start_commit()

    outcome = await client.upsert([record("a", 1), record("b", 1)], instant_time)

    assert outcome.total_records == 2
    assert await visible_records(session_maker) == {}
    assert (await store.open_metadata(BASE_PATH)).timeline.is_empty()

    assert await client.commit(instant_time, outcome, {CHECKPOINT_KEY: "ck1"})

    assert set(await visible_records(session_maker)) == {"a", "b"}
    timeline = (await store.open_metadata(BASE_PATH)).timeline
    assert timeline.count() == 1
    assert timeline.get_commit_metadata(timeline.last_instant()).get_metadata(CHECKPOINT_KEY) == "ck1"


@pytest.mark.asyncio
async def test_upsert_overwrites_and_combines(store, session_maker):
    client = client_for(store)
    first = await client.start_commit()
    await client.commit(first, await client.upsert([record("a", 1, value="old")], first), {CHECKPOINT_KEY: "ck1"})

    second = await client.start_commit()
    outcome = await client.upsert([record("a", 2, value="new"), record("a", 3, value="newest")], second)
    await client.commit(second, outcome, {CHECKPOINT_KEY: "ck2"})

    assert (await visible_records(session_maker))["a"]["value"] == "newest"


@pytest.mark.asyncio
async def test_insert_existing_key_is_an_error_record(store, session_maker):
    client = client_for(store)
    first = await client.start_commit()
    await client.commit(first, await client.insert([record("a", 1)], first), {CHECKPOINT_KEY: "ck1"})

    second = await client.start_commit()
    outcome = await client.insert([record("a", 2), record("b", 2)], second)

    assert outcome.total_records == 2
    assert outcome.total_error_records == 1
    assert "a" in outcome.error_statuses()[0].errors


@pytest.mark.asyncio
async def test_missing_required_field(store):
    client = client_for(store)
    instant_time = await client.start_commit()

    outcome = await client.bulk_insert([PreparedRecord(key=RecordKey(record_key="x"), ordering_value=1, payload={"ts": 1})], instant_time)

    assert outcome.total_error_records == 1


@pytest.mark.asyncio
async def test_rollback_discards_staged_rows(store, session_maker):
    client = client_for(store)
    instant_time = await client.start_commit()
    await client.upsert([record("a", 1)], instant_time)

    assert await client.rollback(instant_time)

    assert await visible_records(session_maker) == {}
    async with session_maker() as session:
        staged = (await session.execute(select(StagedRecord))).scalars().all()
        instant = (await session.execute(select(TableInstant))).scalar_one()
    assert staged == []
    assert instant.state == InstantState.ROLLED_BACK
    # A rolled back instant cannot be committed
    assert not await client.commit(instant_time, WriteOutcome())


@pytest.mark.asyncio
async def test_completed_instant_cannot_be_rolled_back(store):
    client = client_for(store)
    instant_time = await client.start_commit()
    await client.commit(instant_time, await client.upsert([record("a", 1)], instant_time), {CHECKPOINT_KEY: "ck1"})

    assert not await client.rollback(instant_time)


@pytest.mark.asyncio
async def test_start_commit_rejects_clock_behind_timeline(store, session_maker):
    async with session_maker() as session:
        async with session.begin():
            session.add(TableInstant(
                base_path=BASE_PATH,
                instant_time="99991231235959999",
                action=InstantAction.COMMIT,
                state=InstantState.INFLIGHT
            ))

    with pytest.raises(InstantStateError):
        await client_for(store).start_commit()


@pytest.mark.asyncio
async def test_schedule_compaction_for_merge_on_read(session_maker):
    store = PostgresTableStore(session_maker)
    await store.init_table(BASE_PATH, TableType.MERGE_ON_READ, "events", "OverwriteWithLatestPayload")
    client = client_for(store, table_type=TableType.MERGE_ON_READ)

    assert await client.schedule_compaction() is None

    instant_time = await client.start_commit()
    await client.commit(instant_time, await client.upsert([record("a", 1)], instant_time), {CHECKPOINT_KEY: "ck1"})

    compaction = await client.schedule_compaction()
    assert compaction is not None
    # Nothing new since the requested compaction
    assert await client.schedule_compaction() is None


@pytest.mark.asyncio
async def test_describe_table(store):
    client = client_for(store)
    instant_time = await client.start_commit()
    outcome = await client.upsert([record("a", 1, partition="2024/01"), record("b", 1, partition="2024/02")], instant_time)
    await client.commit(instant_time, outcome, {CHECKPOINT_KEY: "ck1"})

    description = await store.describe_table(BASE_PATH)

    assert description.partitions == ["2024/01", "2024/02"]
    assert description.table_schema["name"] == "events"


@pytest.mark.asyncio
async def test_closed_client_rejects_calls(store):
    client = client_for(store)
    await client.close()

    with pytest.raises(TableStoreError):
        await client.start_commit()


@pytest.mark.asyncio
async def test_run_recorder(session_maker):
    recorder = PostgresRunRecorder(session_maker)

    run_id = await recorder.start("events")
    await recorder.complete(run_id, SyncRoundResult(
        status=SyncStatus.COMMITTED,
        table_name="events",
        resumed_from="ck1",
        checkpoint="ck2",
        instant_time="20240115100000000",
        total_records=10
    ))

    failed_id = await recorder.start("events")
    await recorder.fail(failed_id, InstantStateError("race", context={"base_path": BASE_PATH}), checkpoint_before="ck2")

    async with session_maker() as session:
        runs = {r.run_id: r for r in (await session.execute(select(SyncRun))).scalars().all()}

    assert runs[run_id].status == SyncStatus.COMMITTED
    assert runs[run_id].checkpoint_after == "ck2"
    assert runs[run_id].duration_seconds >= 0
    assert runs[failed_id].status == SyncStatus.FAILED
    assert runs[failed_id].error_details["error_type"] == "InstantStateError"
