"""
Transactional repository scopes for background workers.

Each scope opens its own session; workers never share a session between
tasks.
"""
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from machinehub.infrastructure.database import (
    FetchLogRepository,
    TelemetryRepository,
    get_db_session,
)

TelemetryScope = Callable[[], AsyncContextManager[TelemetryRepository]]
FetchLogScope = Callable[[], AsyncContextManager[FetchLogRepository]]


@asynccontextmanager
async def telemetry_repository_scope() -> AsyncGenerator[TelemetryRepository, None]:
    async with get_db_session() as session:
        yield TelemetryRepository(session)


@asynccontextmanager
async def fetch_log_repository_scope() -> AsyncGenerator[FetchLogRepository, None]:
    async with get_db_session() as session:
        yield FetchLogRepository(session)
