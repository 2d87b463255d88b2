"""
# Vehicle Platform Database - Main Application Module

FastAPI entry point of the multi-tenant data-access service.

## Lifespan

**Startup:**
1. **Entity Catalog**: Registers every shared and company entity, then freezes the registry.
2. **Database**: Connects the shared (main) MongoDB database with retry logic.
3. **Tenant Sweeper**: Starts the periodic sweep that closes idle tenant connections.

**Shutdown:**
1. **Tenant Connections**: Stops the sweeper and closes every cached tenant connection.
2. **Database**: Disconnects the shared database.

## Request Pipeline

```
request ─▶ (auth layer sets request.state.principal)
        ─▶ TenantContextMiddleware  opens RequestDataContext for the caller's company
        ─▶ route handler            await context.resolve("Vehicle")
        ─▶ finally                  context.release()
```

## Running

```bash
uvicorn vehicle_platform_database.main:app --reload --host 0.0.0.0 --port 8000
```
"""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
import uvicorn

from vehicle_platform_database import __version__
from vehicle_platform_database.config import settings
from vehicle_platform_database.database import connection_manager, db_manager, entity_registry
from vehicle_platform_database.database.entity_catalog import register_default_entities
from vehicle_platform_database.managers.logging_manager import get_logger
from vehicle_platform_database.middleware.tenant_context import TenantContextMiddleware
from vehicle_platform_database.routes import health
from vehicle_platform_database.routes.error_handlers import register_exception_handlers

logger = get_logger(prefix="[Main]")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan: prepare the data-access core before serving requests and tear
    it down afterwards.

    Args:
        _app (FastAPI): The FastAPI application instance.

    Raises:
        EntityRegistryError: If the entity catalog is misconfigured.
        ServerSelectionTimeoutError: If the shared database is unreachable.
    """
    startup_start_time = time.time()
    logger.info(
        "Starting Vehicle Platform Database %s (%s)",
        __version__,
        "production" if settings.is_production else "development",
    )

    register_default_entities(entity_registry)
    entity_registry.freeze()

    db_connect_start = time.time()
    logger.info("Initiating database connection...")
    await db_manager.connect()
    logger.info("Database connected in %.3fs", time.time() - db_connect_start)

    connection_manager.start_sweeper()
    logger.info("Startup completed in %.3fs", time.time() - startup_start_time)

    try:
        yield
    finally:
        shutdown_start_time = time.time()
        logger.info("Shutting down...")
        await connection_manager.close_all()
        await db_manager.disconnect()
        logger.info("Shutdown completed in %.3fs", time.time() - shutdown_start_time)


app = FastAPI(
    title="Vehicle Platform Database",
    description="Multi-tenant data-access core: shared and per-company MongoDB databases.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(TenantContextMiddleware)
register_exception_handlers(app)
app.include_router(health.router)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    should_instrument_requests_inprogress=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")


def run():
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(
        "vehicle_platform_database.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
