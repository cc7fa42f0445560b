"""
PostgreSQL connection handling for MachineHub.

The API and the worker each hold one engine. Connections are tagged with
an ``application_name`` per process so the two show up separately in
``pg_stat_activity``.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ...config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class DatabaseManager:
    """Process-wide engine and session factory."""

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _application_name: str = "machinehub-api"

    @classmethod
    def configure(cls, application_name: str) -> None:
        """Set the connection tag; call before the first session is opened."""
        if cls._engine is not None:
            logger.warning(
                f"Engine already created as {cls._application_name}, "
                f"ignoring application name {application_name}"
            )
            return
        cls._application_name = application_name

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            database = settings.database
            cls._engine = create_async_engine(
                database.url,
                echo=database.echo_sql,
                pool_size=database.pool_size,
                max_overflow=database.max_overflow,
                pool_pre_ping=True,
                connect_args={
                    "server_settings": {
                        "application_name": cls._application_name,
                        "statement_timeout": str(database.statement_timeout_ms),
                    },
                },
            )
            logger.info(
                f"Database engine created for {database.host}:{database.port}/{database.name} "
                f"({cls._application_name})"
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                bind=cls.get_engine(),
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def close(cls) -> None:
        """Dispose the engine and its pool."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for one unit of work.

    Repositories commit explicitly at their consistency points; whatever
    is still open when the block exits is committed, and rolled back if the
    block raises.
    """
    session = DatabaseManager.get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_db_session() as session:
        yield session


async def health_check() -> bool:
    """Check database connectivity."""
    try:
        async with get_db_session() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True
