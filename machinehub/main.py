"""
FastAPI application entry point for MachineHub.

Serves:
- Supplier webhooks (Event Grid and CloudEvents handshakes included)
- Operator endpoints for suppliers, records and deliveries
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .api.v1 import api_router, webhooks_router
from .application.services import TenantResolver, VerificationChain
from .config import AppSettings, get_settings
from .domain.exceptions import DomainException
from .infrastructure.database import DatabaseManager
from .infrastructure.database import health_check as database_health
from .infrastructure.messaging import DeliveryQueue, RedisStreamManager
from .infrastructure.messaging import health_check as redis_health
from .suppliers import SupplierRegistry

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Verify Redis on startup and release connections on shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")
    logger.info(f"Suppliers: {', '.join(app.state.registry.names()) or 'none'}")

    # Accepted events cannot be queued for delivery without Redis
    try:
        client = await RedisStreamManager.get_client()
        await client.ping()
    except (redis.RedisError, OSError) as e:
        logger.error(f"Redis unavailable at startup: {e}")
        raise

    yield

    logger.info("Shutting down")
    await DatabaseManager.close()
    await RedisStreamManager.close()


def load_registry(app_settings: AppSettings) -> SupplierRegistry:
    """Registry from the configured supplier file; empty when the file is missing."""
    path = app_settings.ingestion.suppliers_file
    if not path.exists():
        logger.warning(f"Supplier config not found at {path}, no suppliers registered")
        return SupplierRegistry()
    return SupplierRegistry.from_file(path, app_settings)


def create_app(
    registry: Optional[SupplierRegistry] = None,
    delivery_queue: Optional[DeliveryQueue] = None,
    verification: Optional[VerificationChain] = None,
) -> FastAPI:
    """
    Application factory.

    Collaborators not passed in are built from settings and kept on
    ``app.state`` for the request dependencies.
    """
    show_docs = settings.debug
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Coffee machine telemetry ingestion and tenant delivery",
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
        lifespan=lifespan,
    )

    app.state.registry = registry if registry is not None else load_registry(settings)
    app.state.delivery_queue = delivery_queue or DeliveryQueue()
    app.state.verification = verification or VerificationChain()
    app.state.tenant_resolver = TenantResolver()

    register_exception_handlers(app)
    register_routes(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")

        content = {'error': 'INTERNAL_ERROR', 'message': 'An internal error occurred'}
        if settings.debug:
            content.update(message=str(exc), type=type(exc).__name__)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["Health"])
    async def health():
        """Database and Redis reachability."""
        db_ok, redis_ok = await asyncio.gather(database_health(), redis_health())
        return {
            'status': 'healthy' if db_ok and redis_ok else 'unhealthy',
            'services': {
                'database': 'up' if db_ok else 'down',
                'redis': 'up' if redis_ok else 'down',
            },
            'suppliers': len(app.state.registry),
            'version': settings.app_version,
            'environment': settings.environment,
        }

    @app.get("/", tags=["Root"])
    async def root():
        return {
            'name': settings.app_name,
            'version': settings.app_version,
            'api': f"{settings.api_prefix}/{settings.api_version}",
        }

    app.include_router(webhooks_router)
    app.include_router(api_router, prefix=f"{settings.api_prefix}/{settings.api_version}")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run("machinehub.main:app", host=settings.host, port=settings.port, reload=settings.debug)
