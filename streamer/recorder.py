"""
Audit trail of sync rounds
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.base import SyncStatus
from models.sync_run import SyncRun
from schemas.result import SyncRoundResult

logger = logging.getLogger(__name__)


class RunRecorder(ABC):
    """Receives the start and the outcome of every round"""

    @abstractmethod
    async def start(self, table_name: str) -> Any:
        """Return a handle passed back to complete() / fail()"""
        pass

    @abstractmethod
    async def complete(self, handle: Any, result: SyncRoundResult) -> None:
        pass

    @abstractmethod
    async def fail(self, handle: Any, error: Exception, checkpoint_before: Optional[str] = None) -> None:
        pass


class PostgresRunRecorder(RunRecorder):
    """Record rounds in the sync_runs table"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def start(self, table_name: str) -> uuid.UUID:
        run_id = uuid.uuid4()
        async with self.session_maker() as session:
            async with session.begin():
                session.add(SyncRun(
                    run_id=run_id,
                    table_name=table_name,
                    status=SyncStatus.RUNNING,
                    started_at=datetime.utcnow()
                ))
        return run_id

    async def _finish(self, run_id: uuid.UUID, values: Dict[str, Any]) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(select(SyncRun).where(SyncRun.run_id == run_id))
                run = result.scalar_one_or_none()
                if run is None:
                    logger.warning(f"Sync run {run_id} not found, outcome not recorded")
                    return
                run.completed_at = datetime.utcnow()
                run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
                for name, value in values.items():
                    setattr(run, name, value)

    async def complete(self, handle: uuid.UUID, result: SyncRoundResult) -> None:
        await self._finish(handle, {
            "status": result.status,
            "total_records": result.total_records,
            "total_error_records": result.total_error_records,
            "checkpoint_before": result.resumed_from,
            "checkpoint_after": result.checkpoint,
            "instant_time": result.instant_time,
            "scheduled_compaction": result.scheduled_compaction,
            "catalog_sync_error": result.catalog_sync_error,
        })

    async def fail(self, handle: uuid.UUID, error: Exception, checkpoint_before: Optional[str] = None) -> None:
        details = error.to_dict() if hasattr(error, "to_dict") else {"error_type": type(error).__name__}
        await self._finish(handle, {
            "status": SyncStatus.FAILED,
            "checkpoint_before": checkpoint_before,
            "error_message": str(error),
            "error_details": details,
        })
