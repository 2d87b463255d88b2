"""
Tenant context middleware.

Runs after authentication. For every HTTP request it determines the caller's tenant
from the authenticated principal, opens a `RequestDataContext` and releases it when the
request ends, whether the handler returned normally, raised, or the client went away.

Route handlers obtain the context through the `get_data_context` dependency:

```python
@router.get("/vehicles/{vin}")
async def get_vehicle(vin: str, context: RequestDataContext = Depends(get_data_context)):
    vehicles = (await context.resolve("Vehicle")).collection
    return await vehicles.find_one({"vin": vin})
```
"""

from contextvars import ContextVar
from typing import Any, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from vehicle_platform_database.database.connection_manager import ConnectionManager, connection_manager
from vehicle_platform_database.database.entity_registry import EntityRegistry, entity_registry
from vehicle_platform_database.database.manager import DatabaseManager, db_manager
from vehicle_platform_database.database.request_context import RequestDataContext
from vehicle_platform_database.managers.logging_manager import get_logger
from vehicle_platform_database.models.connection_models import (
    MASTER_ADMIN_ROLE,
    SUPPLIER_ROLE,
    AuthenticatedPrincipal,
)

logger = get_logger(prefix="[TenantContext]")

current_data_context: ContextVar[Optional[RequestDataContext]] = ContextVar("current_data_context", default=None)


def resolve_tenant_id(principal: Optional[AuthenticatedPrincipal]) -> Optional[str]:
    """
    Determine which company database a principal works against.

    - master admins: none, they only see shared data
    - dealership users: their company
    - suppliers: their company, when they have one
    - other users: their company, when a company database is recorded on the user
    """
    if principal is None:
        return None
    if principal.is_dealership_user:
        return principal.company_id or None
    if principal.role == MASTER_ADMIN_ROLE:
        return None
    if principal.role == SUPPLIER_ROLE:
        return principal.company_id or None
    if principal.company_db_name:
        return principal.company_id or None
    return None


def principal_from_request(request: Request) -> Optional[AuthenticatedPrincipal]:
    """Read the principal the authentication layer placed on `request.state`."""
    principal = getattr(request.state, "principal", None)
    if principal is None or isinstance(principal, AuthenticatedPrincipal):
        return principal
    return AuthenticatedPrincipal.model_validate(principal)


class TenantContextMiddleware(BaseHTTPMiddleware):
    """
    Attach a `RequestDataContext` to every request and release it afterwards.

    The context is stored on `request.state.data_context` and in `current_data_context`.
    """

    def __init__(
        self,
        app: Any,
        registry: Optional[EntityRegistry] = None,
        connections: Optional[ConnectionManager] = None,
        database_manager: Optional[DatabaseManager] = None,
        principal_loader: Callable[[Request], Optional[AuthenticatedPrincipal]] = principal_from_request,
    ):
        super().__init__(app)
        self.registry = registry if registry is not None else entity_registry
        self.connections = connections if connections is not None else connection_manager
        self.database_manager = database_manager if database_manager is not None else db_manager
        self.principal_loader = principal_loader

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        principal = self.principal_loader(request)
        tenant_id = resolve_tenant_id(principal)

        context = RequestDataContext(
            self.registry,
            self.connections,
            self.database_manager.database,
            tenant_id,
        )
        request.state.data_context = context
        token = current_data_context.set(context)
        if tenant_id:
            logger.debug("Request %s %s scoped to company %s", request.method, request.url.path, tenant_id)

        try:
            return await call_next(request)
        finally:
            context.release()
            current_data_context.reset(token)


def get_data_context(request: Request) -> RequestDataContext:
    """
    FastAPI dependency returning the current request's data context.

    Raises:
        RuntimeError: If `TenantContextMiddleware` is not installed.
    """
    context = getattr(request.state, "data_context", None)
    if context is None:
        raise RuntimeError("TenantContextMiddleware is not installed")
    return context
