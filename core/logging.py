"""
Logging configuration for the sync service
"""

import json
import logging
import sys
from typing import Optional

from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class SyncContextFormatter(logging.Formatter):
    """Appends the structured error context that failed rounds and catalog syncs log as an extra"""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        error_context = getattr(record, "error_context", None)
        if error_context:
            message = f"{message} | context={json.dumps(error_context, default=str, sort_keys=True)}"
        return message


def setup_logging(level: Optional[str] = None):
    """Configure the root logger, defaulting to settings.LOG_LEVEL"""
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SyncContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logging.basicConfig(level=log_level, handlers=[handler])

    # Database and scheduler internals only above WARNING
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Sync service logging configured at {level_name} level")
