"""
Database session management with SQLAlchemy async
"""

from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine used by the table store and run recorder"""
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=False,
        poolclass=NullPool,  # For async, connection pooling handled differently
        future=True
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to the engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )

