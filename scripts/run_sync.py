"""
Script to run the delta sync for the configured target table.

Runs a single round, or keeps running rounds on an interval when
SYNC_CONTINUOUS_MODE is set.
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings, settings
from core.database import create_engine, create_session_maker
from core.exceptions import ConfigurationError, InstantStateError
from core.logging import setup_logging
from schemas.config import SyncConfig
from streamer.catalog import CatalogSyncTrigger, HttpCatalogSyncTool
from streamer.recorder import PostgresRunRecorder
from streamer.retry import RetryPolicy
from streamer.scheduler import SyncScheduler
from streamer.schema_provider import FileSchemaProvider
from streamer.sources.base import Source
from streamer.sources.csv_source import CsvDirectorySource
from streamer.sources.http_source import HttpJsonSource
from streamer.store.postgres import PostgresTableStore
from streamer.sync_round import SyncRound

logger = logging.getLogger(__name__)


def build_source(settings: Settings) -> Source:
    """Configure your data source here"""
    source_type = settings.SOURCE_TYPE.lower()
    if source_type == "csv":
        return CsvDirectorySource(
            source_name=settings.SYNC_TARGET_TABLE,
            directory=settings.CSV_SOURCE_DIR
        )
    if source_type == "http":
        if not settings.HTTP_SOURCE_URL:
            raise ConfigurationError(
                "HTTP_SOURCE_URL is required for the http source",
                context={"source_type": source_type}
            )
        return HttpJsonSource(
            source_name=settings.SYNC_TARGET_TABLE,
            api_url=settings.HTTP_SOURCE_URL,
            api_key=settings.HTTP_SOURCE_API_KEY,
            timestamp_field=settings.HTTP_SOURCE_TIMESTAMP_FIELD
        )
    raise ConfigurationError(
        f"Unknown source type: {settings.SOURCE_TYPE}",
        context={"source_type": settings.SOURCE_TYPE, "supported": ["csv", "http"]}
    )


def build_sync_round(settings: Settings, session_maker: async_sessionmaker) -> SyncRound:
    """Wire a sync round from process settings"""
    cfg = SyncConfig.from_settings(settings)
    table_store = PostgresTableStore(session_maker)

    catalog_trigger = None
    if cfg.enable_catalog_sync:
        if not settings.CATALOG_URL:
            raise ConfigurationError(
                "CATALOG_URL is required when catalog sync is enabled",
                context={"setting": "CATALOG_URL"}
            )
        catalog_trigger = CatalogSyncTrigger(
            tool=HttpCatalogSyncTool(
                catalog_url=settings.CATALOG_URL,
                database=settings.CATALOG_DATABASE,
                api_key=settings.CATALOG_API_KEY
            ),
            table_store=table_store,
            base_path=cfg.target_base_path
        )

    schema_provider = FileSchemaProvider(settings.SYNC_SCHEMA_FILE) if settings.SYNC_SCHEMA_FILE else None

    return SyncRound(
        cfg=cfg,
        source=build_source(settings),
        table_store=table_store,
        schema_provider=schema_provider,
        catalog_trigger=catalog_trigger,
        run_recorder=PostgresRunRecorder(session_maker),
        commit_retry_policy=RetryPolicy(
            max_attempts=settings.COMMIT_START_MAX_ATTEMPTS,
            delay_seconds=settings.COMMIT_START_RETRY_DELAY,
            retry_on=(InstantStateError,)
        )
    )


async def run_sync():
    """Run the delta sync for the configured target table"""
    engine = create_engine()
    session_maker = create_session_maker(engine)

    try:
        sync_round = build_sync_round(settings, session_maker)

        if sync_round.cfg.continuous_mode:
            logger.info(f"Running delta sync for {sync_round.cfg.target_table} in continuous mode")
            await SyncScheduler(sync_round).run_until_stopped()
            return

        try:
            result = await sync_round.run_once()
            logger.info(
                f"Sync completed for {result.table_name}: "
                f"Status={result.status.value}, "
                f"Records={result.total_records}, "
                f"Errors={result.total_error_records}, "
                f"Checkpoint={result.checkpoint}"
            )
            if result.catalog_sync_error:
                logger.warning(f"Catalog sync failed: {result.catalog_sync_error}")
        finally:
            await sync_round.close()

    except Exception as e:
        logger.error(f"Delta sync error: {str(e)}")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_sync())
