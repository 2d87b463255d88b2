"""
Exception handlers mapping data-access errors to HTTP responses.

| Error                            | Status |
|----------------------------------|--------|
| `TenantContextRequiredError`     | 400    |
| `InvalidTenantIdError`           | 400    |
| `SharedDatabaseUnavailableError` | 503    |
| `TenantConnectionError`          | 503    |
| `ContextAlreadyReleasedError`    | 500    |
| `EntityRegistryError` (unknown / duplicate entity, frozen registry) | 500 |

Internal details (tenant ids, database names) never reach the response body.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from vehicle_platform_database.database.exceptions import (
    ContextAlreadyReleasedError,
    EntityRegistryError,
    InvalidTenantIdError,
    SharedDatabaseUnavailableError,
    TenantConnectionError,
    TenantContextRequiredError,
)
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[ErrorHandlers]")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Register the data-access exception handlers on the FastAPI app."""

    @app.exception_handler(TenantContextRequiredError)
    async def tenant_context_required_handler(request: Request, exc: TenantContextRequiredError):
        logger.warning("Company context missing on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_400_BAD_REQUEST, "Company context required for this operation")

    @app.exception_handler(InvalidTenantIdError)
    async def invalid_tenant_id_handler(request: Request, exc: InvalidTenantIdError):
        logger.warning("Unusable company id on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid company context")

    @app.exception_handler(SharedDatabaseUnavailableError)
    async def shared_database_handler(request: Request, exc: SharedDatabaseUnavailableError):
        logger.error("Main database unavailable on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable")

    @app.exception_handler(TenantConnectionError)
    async def tenant_connection_handler(request: Request, exc: TenantConnectionError):
        logger.error("Tenant data unavailable on %s (tenant %s): %s", request.url.path, exc.tenant_id, exc)
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Tenant data unavailable")

    @app.exception_handler(ContextAlreadyReleasedError)
    async def context_released_handler(request: Request, exc: ContextAlreadyReleasedError):
        logger.error("Data context used after release on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database connection error")

    @app.exception_handler(EntityRegistryError)
    async def entity_registry_handler(request: Request, exc: EntityRegistryError):
        logger.error("Entity registry error on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Entity configuration error")
