"""
Postgres-backed table store.

Writes are staged under the inflight instant and only applied to the
visible records table when the instant commits, so an uncommitted or
rolled back instant never changes what readers see.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import TableStoreError, UnsupportedTableTypeError, InstantStateError
from models.base import TableType, WriteOperation, InstantAction, InstantState
from models.instant import TableInstant
from models.record import TableRecord, StagedRecord
from models.table import SyncTable
from schemas.config import WriteConfig
from schemas.records import PreparedRecord, WriteOutcome, WriteStatus
from schemas.timeline import CommitMetadata, Instant, TableDescription, TableMetadata, Timeline
from streamer.preparer import DedupFilter
from streamer.store.base import TableStore, WriteClient

logger = logging.getLogger(__name__)

ARCHIVE_FOLDER = "archived"
STAGING_CHUNK_SIZE = 500

_COMMIT_ACTIONS = {
    TableType.COPY_ON_WRITE: InstantAction.COMMIT,
    TableType.MERGE_ON_READ: InstantAction.DELTA_COMMIT,
}


def new_instant_time() -> str:
    """Sortable instant time, millisecond precision (yyyyMMddHHmmssSSS)"""
    return datetime.utcnow().strftime("%Y%m%d%H%M%S%f")[:17]


def commit_action_for(table_type: TableType) -> InstantAction:
    action = _COMMIT_ACTIONS.get(table_type)
    if action is None:
        raise UnsupportedTableTypeError(
            f"Unsupported table type :{table_type}",
            context={"table_type": str(table_type)}
        )
    return action


def _chunks(rows: List[dict], size: int = STAGING_CHUNK_SIZE):
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class PostgresTableStore(TableStore):
    """Table metadata operations over the sync_* tables"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def metadata_exists(self, base_path: str) -> bool:
        async with self.session_maker() as session:
            return await session.get(SyncTable, base_path) is not None

    async def open_metadata(self, base_path: str) -> TableMetadata:
        async with self.session_maker() as session:
            table = await session.get(SyncTable, base_path)
            if table is None:
                raise TableStoreError(
                    f"No table metadata at {base_path}",
                    context={"base_path": base_path}
                )
            action = commit_action_for(table.table_type)

            result = await session.execute(
                select(TableInstant)
                .where(
                    TableInstant.base_path == base_path,
                    TableInstant.action == action,
                    TableInstant.state == InstantState.COMPLETED
                )
                .order_by(TableInstant.instant_time)
            )
            rows = result.scalars().all()

        timeline = Timeline(
            instants=[Instant(instant_time=r.instant_time, action=r.action, state=r.state) for r in rows],
            details={
                r.instant_time: CommitMetadata(
                    extra_metadata=r.extra_metadata or {},
                    total_records=r.total_records or 0,
                    total_error_records=r.total_error_records or 0
                )
                for r in rows
            }
        )
        return TableMetadata(table_name=table.table_name, table_type=table.table_type, timeline=timeline)

    async def init_table(self, base_path: str, table_type: TableType, table_name: str, payload_class: str) -> None:
        logger.info(f"Initializing {table_type.value} table {table_name} at {base_path}")
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    insert(SyncTable)
                    .values(
                        base_path=base_path,
                        table_name=table_name,
                        table_type=table_type,
                        payload_class=payload_class,
                        archive_folder=ARCHIVE_FOLDER
                    )
                    .on_conflict_do_nothing(index_elements=["base_path"])
                )

    async def describe_table(self, base_path: str) -> TableDescription:
        async with self.session_maker() as session:
            table = await session.get(SyncTable, base_path)
            if table is None:
                raise TableStoreError(
                    f"No table metadata at {base_path}",
                    context={"base_path": base_path}
                )
            result = await session.execute(
                select(TableRecord.partition_path)
                .where(TableRecord.base_path == base_path)
                .distinct()
                .order_by(TableRecord.partition_path)
            )
            partitions = [p for p in result.scalars().all() if p]

        return TableDescription(
            table_name=table.table_name,
            base_path=base_path,
            table_schema=table.table_schema,
            partitions=partitions
        )

    def create_write_client(self, config: WriteConfig) -> "PostgresWriteClient":
        return PostgresWriteClient(self.session_maker, config)


class PostgresWriteClient(WriteClient):
    """
    Two-phase writer over the sync_* tables.

    Ensures:
    - write() only stages rows under the inflight instant
    - commit() applies staged rows and completes the instant atomically
    - rollback() discards staged rows and marks the instant rolled back
    """

    def __init__(self, session_maker: async_sessionmaker, config: WriteConfig):
        super().__init__(config)
        self.session_maker = session_maker
        self.commit_action = commit_action_for(config.table_type)
        self._dedup = DedupFilter()
        self._closed = False

    def _check_open(self):
        if self._closed:
            raise TableStoreError(
                "Write client is closed",
                context={"table_name": self.config.table_name}
            )

    async def _get_instant(self, session: AsyncSession, instant_time: str, for_update: bool = False) -> Optional[TableInstant]:
        stmt = select(TableInstant).where(
            TableInstant.base_path == self.config.base_path,
            TableInstant.instant_time == instant_time
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _latest_instant_time(self, session: AsyncSession) -> Optional[str]:
        result = await session.execute(
            select(func.max(TableInstant.instant_time))
            .where(TableInstant.base_path == self.config.base_path)
        )
        return result.scalar_one_or_none()

    async def _new_instant(self, session: AsyncSession, action: InstantAction, state: InstantState) -> str:
        instant_time = new_instant_time()
        latest = await self._latest_instant_time(session)
        if latest is not None and instant_time <= latest:
            raise InstantStateError(
                "Found an instant at or after the requested instant time",
                context={"instant_time": instant_time, "latest_instant": latest}
            )
        session.add(TableInstant(
            base_path=self.config.base_path,
            instant_time=instant_time,
            action=action,
            state=state
        ))
        return instant_time

    async def start_commit(self) -> str:
        self._check_open()
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    return await self._new_instant(session, self.commit_action, InstantState.INFLIGHT)
        except IntegrityError as e:
            raise InstantStateError(
                "Instant time already taken",
                context={"base_path": self.config.base_path},
                original_exception=e
            )

    def _validate(self, records: List[PreparedRecord], operation: WriteOperation, existing_keys: Set[str]) -> List[Optional[str]]:
        """One error message (or None) per record, in input order"""
        errors: List[Optional[str]] = []
        required = self.config.write_schema.required_fields() if self.config.write_schema else []
        seen: Set[str] = set()
        for record in records:
            key = record.record_key
            missing = [f for f in required if record.payload.get(f) is None]
            if missing:
                errors.append(f"Missing value for non-nullable fields {missing}")
            elif operation != WriteOperation.UPSERT and key in existing_keys:
                errors.append("Record key already exists in table")
            elif operation != WriteOperation.UPSERT and key in seen:
                errors.append("Duplicate record key in batch")
            else:
                errors.append(None)
            seen.add(key)
        return errors

    async def write(self, operation: WriteOperation, records: List[PreparedRecord], instant_time: str) -> WriteOutcome:
        self._check_open()

        combine = (
            self.config.combine_before_upsert
            if operation == WriteOperation.UPSERT
            else self.config.combine_before_insert
        )
        if combine:
            records = self._dedup.filter(records)
        if operation == WriteOperation.BULK_INSERT:
            records = sorted(records, key=lambda r: (r.partition_path, r.record_key))

        async with self.session_maker() as session:
            async with session.begin():
                instant = await self._get_instant(session, instant_time)
                if instant is None or instant.state != InstantState.INFLIGHT:
                    raise TableStoreError(
                        f"Instant {instant_time} is not inflight",
                        context={"instant_time": instant_time, "base_path": self.config.base_path}
                    )

                existing_keys: Set[str] = set()
                if operation != WriteOperation.UPSERT and records:
                    keys = [r.record_key for r in records]
                    for chunk in _chunks(keys):
                        result = await session.execute(
                            select(TableRecord.record_key).where(
                                TableRecord.base_path == self.config.base_path,
                                TableRecord.record_key.in_(chunk)
                            )
                        )
                        existing_keys.update(result.scalars().all())

                errors = self._validate(records, operation, existing_keys)

                statuses: Dict[str, WriteStatus] = {}
                staged = []
                for record, error in zip(records, errors):
                    status = statuses.setdefault(
                        record.partition_path,
                        WriteStatus(partition_path=record.partition_path)
                    )
                    status.total_records += 1
                    if error is not None:
                        status.total_error_records += 1
                        status.errors.setdefault(record.record_key, error)
                        continue
                    staged.append({
                        "instant_id": instant.id,
                        "record_key": record.record_key,
                        "partition_path": record.partition_path,
                        "operation": operation,
                        "ordering_value": record.ordering_value,
                        "payload": record.payload,
                    })

                for chunk in _chunks(staged):
                    await session.execute(insert(StagedRecord), chunk)

        outcome = WriteOutcome(statuses=list(statuses.values()))
        logger.info(
            f"{operation.value} staged {len(staged)} records for instant {instant_time}. "
            f"Errors/Total={outcome.total_error_records}/{outcome.total_records}"
        )
        return outcome

    async def commit(self, instant_time: str, outcome: WriteOutcome, extra_metadata: Optional[Dict[str, str]] = None) -> bool:
        self._check_open()
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    instant = await self._get_instant(session, instant_time, for_update=True)
                    if instant is None or instant.state != InstantState.INFLIGHT:
                        logger.error(f"Cannot commit {instant_time}: instant is not inflight")
                        return False

                    result = await session.execute(
                        select(StagedRecord).where(StagedRecord.instant_id == instant.id).order_by(StagedRecord.id)
                    )
                    staged = result.scalars().all()
                    await self._apply(session, staged, instant_time)

                    await session.execute(delete(StagedRecord).where(StagedRecord.instant_id == instant.id))

                    instant.state = InstantState.COMPLETED
                    instant.extra_metadata = dict(extra_metadata or {})
                    instant.total_records = outcome.total_records
                    instant.total_error_records = outcome.total_error_records
                    instant.completed_at = datetime.utcnow()

                    if self.config.write_schema is not None:
                        table = await session.get(SyncTable, self.config.base_path)
                        if table is not None:
                            table.table_schema = self.config.write_schema.model_dump()
            return True
        except IntegrityError as e:
            logger.error(f"Commit {instant_time} failed applying staged records: {e}")
            return False

    async def _apply(self, session: AsyncSession, staged: List[StagedRecord], instant_time: str):
        now = datetime.utcnow()
        upserts = []
        inserts = []
        for row in staged:
            values = {
                "base_path": self.config.base_path,
                "record_key": row.record_key,
                "partition_path": row.partition_path,
                "ordering_value": row.ordering_value,
                "payload": row.payload,
                "commit_time": instant_time,
                "updated_at": now,
            }
            (upserts if row.operation == WriteOperation.UPSERT else inserts).append(values)

        for chunk in _chunks(inserts):
            await session.execute(insert(TableRecord), chunk)

        if upserts:
            stmt = insert(TableRecord)
            stmt = stmt.on_conflict_do_update(
                index_elements=["base_path", "record_key"],
                set_={
                    "partition_path": stmt.excluded.partition_path,
                    "ordering_value": stmt.excluded.ordering_value,
                    "payload": stmt.excluded.payload,
                    "commit_time": stmt.excluded.commit_time,
                    "updated_at": stmt.excluded.updated_at,
                }
            )
            for chunk in _chunks(upserts):
                await session.execute(stmt, chunk)

    async def rollback(self, instant_time: str) -> bool:
        self._check_open()
        async with self.session_maker() as session:
            async with session.begin():
                instant = await self._get_instant(session, instant_time, for_update=True)
                if instant is None or instant.state == InstantState.COMPLETED:
                    logger.error(f"Cannot roll back {instant_time}: instant missing or already completed")
                    return False
                await session.execute(delete(StagedRecord).where(StagedRecord.instant_id == instant.id))
                instant.state = InstantState.ROLLED_BACK
                instant.completed_at = datetime.utcnow()
        logger.info(f"Rolled back instant {instant_time}")
        return True

    async def schedule_compaction(self) -> Optional[str]:
        self._check_open()
        if self.config.table_type != TableType.MERGE_ON_READ or self.config.inline_compaction:
            return None

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(func.max(TableInstant.instant_time)).where(
                        TableInstant.base_path == self.config.base_path,
                        TableInstant.action == InstantAction.COMPACTION
                    )
                )
                last_compaction = result.scalar_one_or_none()

                pending = select(func.count()).select_from(TableInstant).where(
                    TableInstant.base_path == self.config.base_path,
                    TableInstant.action == InstantAction.DELTA_COMMIT,
                    TableInstant.state == InstantState.COMPLETED
                )
                if last_compaction is not None:
                    pending = pending.where(TableInstant.instant_time > last_compaction)
                if (await session.execute(pending)).scalar_one() == 0:
                    return None

                return await self._new_instant(session, InstantAction.COMPACTION, InstantState.REQUESTED)

    async def close(self) -> None:
        self._closed = True
