"""
Interfaces of the transactional table store
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from models.base import TableType, WriteOperation
from schemas.config import WriteConfig
from schemas.records import PreparedRecord, WriteOutcome
from schemas.timeline import TableDescription, TableMetadata


class WriteClient(ABC):
    """
    Two-phase writer bound to one table.

    write() produces per-record outcomes without making anything visible;
    only commit() publishes the instant, rollback() discards it.
    """

    def __init__(self, config: WriteConfig):
        self.config = config

    @abstractmethod
    async def start_commit(self) -> str:
        """
        Start a new instant and return its time.

        Raises:
            InstantStateError: The timeline is not settled yet, may be retried
        """
        pass

    @abstractmethod
    async def write(self, operation: WriteOperation, records: List[PreparedRecord], instant_time: str) -> WriteOutcome:
        pass

    async def insert(self, records: List[PreparedRecord], instant_time: str) -> WriteOutcome:
        return await self.write(WriteOperation.INSERT, records, instant_time)

    async def upsert(self, records: List[PreparedRecord], instant_time: str) -> WriteOutcome:
        return await self.write(WriteOperation.UPSERT, records, instant_time)

    async def bulk_insert(self, records: List[PreparedRecord], instant_time: str) -> WriteOutcome:
        return await self.write(WriteOperation.BULK_INSERT, records, instant_time)

    @abstractmethod
    async def commit(self, instant_time: str, outcome: WriteOutcome, extra_metadata: Optional[Dict[str, str]] = None) -> bool:
        pass

    @abstractmethod
    async def rollback(self, instant_time: str) -> bool:
        pass

    @abstractmethod
    async def schedule_compaction(self) -> Optional[str]:
        """Request (not run) a compaction; return its instant time if one was scheduled"""
        pass

    async def close(self) -> None:
        pass


class TableStore(ABC):
    """Table-level metadata operations and write-client construction"""

    @abstractmethod
    async def metadata_exists(self, base_path: str) -> bool:
        pass

    @abstractmethod
    async def open_metadata(self, base_path: str) -> TableMetadata:
        """
        Raises:
            UnsupportedTableTypeError: Table type has no known commit timeline
        """
        pass

    @abstractmethod
    async def init_table(self, base_path: str, table_type: TableType, table_name: str, payload_class: str) -> None:
        pass

    @abstractmethod
    async def describe_table(self, base_path: str) -> TableDescription:
        pass

    @abstractmethod
    def create_write_client(self, config: WriteConfig) -> WriteClient:
        pass
