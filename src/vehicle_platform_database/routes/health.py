"""
Health and connection observability routes.

- `GET /health`: shared database liveness plus a one-line tenant cache summary.
- `GET /health/connections`: full `ConnectionStats` snapshot of the tenant connection cache.

Both routes refresh the Prometheus gauges exposed on `/metrics`.
"""

from typing import Any, Dict

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from vehicle_platform_database.database.connection_manager import connection_manager
from vehicle_platform_database.database.manager import db_manager
from vehicle_platform_database.managers.logging_manager import get_logger
from vehicle_platform_database.models.connection_models import ConnectionStats
from vehicle_platform_database.services.connection_metrics import connection_metrics

logger = get_logger(prefix="[HealthRoutes]")

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """
    Report service health.

    Returns 200 when the shared database answers a ping, 503 otherwise. The tenant cache
    is reported for information only; an unreachable tenant never fails this check.
    """
    database_healthy = await db_manager.health_check()
    stats = connection_manager.stats()
    connection_metrics.update_from_stats(stats)

    body: Dict[str, Any] = {
        "status": "healthy" if database_healthy else "unhealthy",
        "database": "connected" if database_healthy else "disconnected",
        "tenant_connections": {
            "cached": stats.cached_tenant_count,
            "active_requests": stats.total_active_requests,
            "capacity": stats.capacity,
        },
    }
    if not database_healthy:
        logger.warning("Health check reporting unhealthy shared database")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@router.get("/connections", response_model=ConnectionStats)
async def connection_stats() -> ConnectionStats:
    """Snapshot of cached tenant connections, reference counts and cache hit rate."""
    stats = connection_manager.stats()
    connection_metrics.update_from_stats(stats)
    return stats
