import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from schemas.result import SyncRoundResult
from streamer.sync_round import SyncRound

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Continuous mode: run sync rounds back to back on an interval.

    Rounds never overlap. A failing round stops the scheduler; the error
    is kept on `failure` and re-raised by run_until_stopped().
    """

    def __init__(
        self,
        sync_round: SyncRound,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.sync_round = sync_round
        if interval_seconds is None:
            interval_seconds = sync_round.cfg.min_sync_interval_seconds
        self.interval_seconds = max(interval_seconds, 1)
        self.scheduler = scheduler or AsyncIOScheduler()

        self.rounds_run = 0
        self.last_result: Optional[SyncRoundResult] = None
        self.failure: Optional[Exception] = None
        self._stopped: Optional[asyncio.Event] = None

    async def run_sync_job(self):
        """Job to run one sync round"""
        logger.info("Scheduler: Starting sync round")
        try:
            self.last_result = await self.sync_round.run_once()
        except Exception as e:
            logger.error(f"Scheduler: sync round failed, stopping - {e}")
            self.failure = e
            self.stop()
            return
        self.rounds_run += 1
        logger.info(
            f"Scheduler: sync round finished - status={self.last_result.status.value}, "
            f"checkpoint={self.last_result.checkpoint}"
        )

    def start(self):
        """Start the scheduler, the first round runs immediately"""
        self._stopped = asyncio.Event()
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=f"sync_{self.sync_round.cfg.target_table}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started, interval {self.interval_seconds}s")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync Scheduler stopped")
        if self._stopped is not None:
            self._stopped.set()

    async def run_until_stopped(self) -> None:
        """
        Start the scheduler and block until it stops.

        Raises:
            Exception: The error of the round that stopped the scheduler
        """
        self.start()
        try:
            await self._stopped.wait()
        finally:
            self.stop()
            await self.sync_round.close()
        if self.failure is not None:
            raise self.failure
