"""
# Request Data Context

Per-request handle through which business logic reaches entity data. A context is
created by the request pipeline once the caller's tenant is known, and released when
the request ends.

```
created ──resolve(tenant entity)──▶ tenant_bound ──release()──▶ released
   └────────────────────release()─────────────────────────────────┘
```

- Shared entities resolve against the main database; nothing is reference-counted.
- Tenant entities require a tenant. The first tenant resolution takes one reference on
  the tenant's cached connection; every later tenant resolution in the same request
  reuses it. Concurrent first resolutions inside one request acquire exactly once.
- `release()` gives that reference back exactly once, however often it is called.

```python
async with RequestDataContext(registry, connection_manager, db_manager.database, "acme") as context:
    vehicles = (await context.resolve("Vehicle")).collection
    await vehicles.find_one({"vin": vin})
```
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional

from vehicle_platform_database.database.connection_manager import ConnectionManager
from vehicle_platform_database.database.entity_registry import EntityDescriptor, EntityRegistry, EntityScope
from vehicle_platform_database.database.exceptions import (
    ContextAlreadyReleasedError,
    SharedDatabaseUnavailableError,
    TenantContextRequiredError,
)
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[RequestContext]")


class ContextState(str, Enum):
    CREATED = "created"
    TENANT_BOUND = "tenant_bound"
    RELEASED = "released"


@dataclass(frozen=True)
class BoundHandle:
    """
    An entity bound to the database it must be read from and written to.

    Attributes:
        descriptor: The registered entity.
        database: Main database for shared entities, the tenant database otherwise.
        tenant_id: The bound tenant, `None` for shared entities.
    """

    descriptor: EntityDescriptor
    database: Any
    tenant_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def scope(self) -> EntityScope:
        return self.descriptor.scope

    @property
    def collection(self) -> Any:
        return self.database[self.descriptor.shape.collection_name]


class RequestDataContext:
    """
    Resolves entity names to bound handles for the duration of one request.

    Args:
        registry: The frozen entity registry.
        connection_manager: Source of tenant connections.
        shared_database: The main database handle.
        tenant_id: The caller's tenant, or `None` for shared-only requests.
    """

    def __init__(
        self,
        registry: EntityRegistry,
        connection_manager: ConnectionManager,
        shared_database: Any,
        tenant_id: Optional[str] = None,
    ):
        self._registry = registry
        self._connection_manager = connection_manager
        self._shared_database = shared_database
        self._tenant_id = str(tenant_id) if tenant_id else None
        self._connection: Any = None
        self._acquire_lock = asyncio.Lock()
        self._state = ContextState.CREATED

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def tenant_id(self) -> Optional[str]:
        return self._tenant_id

    @property
    def is_tenant_bound(self) -> bool:
        return self._state is ContextState.TENANT_BOUND

    @property
    def released(self) -> bool:
        return self._state is ContextState.RELEASED

    async def resolve(self, entity_name: str) -> BoundHandle:
        """
        Bind an entity to the correct database for this request.

        Raises:
            UnknownEntityError: If the entity was never registered.
            TenantContextRequiredError: If a tenant entity is requested without a tenant.
            SharedDatabaseUnavailableError: If a shared entity is requested before the main database is connected.
            ContextAlreadyReleasedError: If the context was released.
            TenantConnectionError: If the tenant's database cannot be reached.
        """
        if self.released:
            raise ContextAlreadyReleasedError(entity_name)

        descriptor = self._registry.resolve(entity_name)

        if not descriptor.is_tenant_scoped:
            if self._shared_database is None:
                raise SharedDatabaseUnavailableError()
            return BoundHandle(descriptor, self._shared_database)

        if not self._tenant_id:
            # A tenant entity reached without a tenant points at a routing bug
            logger.error("Tenant-scoped entity %s requested without company context", entity_name)
            raise TenantContextRequiredError(entity_name)

        connection = await self._tenant_connection(entity_name)
        return BoundHandle(descriptor, connection.database, self._tenant_id)

    async def _tenant_connection(self, entity_name: str) -> Any:
        if self._connection is not None:
            return self._connection

        async with self._acquire_lock:
            if self.released:
                raise ContextAlreadyReleasedError(entity_name)
            if self._connection is None:
                connection = await self._connection_manager.acquire(self._tenant_id)
                if self.released:
                    # Released while the acquire was in flight
                    self._connection_manager.release(self._tenant_id)
                    raise ContextAlreadyReleasedError(entity_name)
                self._connection = connection
                self._state = ContextState.TENANT_BOUND
                logger.debug("Request bound to tenant %s", self._tenant_id)
            return self._connection

    def release(self) -> None:
        """Give back the tenant reference, if any. Safe to call more than once."""
        if self._state is ContextState.RELEASED:
            return
        connection, self._connection = self._connection, None
        self._state = ContextState.RELEASED
        if connection is not None:
            self._connection_manager.release(self._tenant_id)
            logger.debug("Request released tenant %s", self._tenant_id)

    async def __aenter__(self) -> "RequestDataContext":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        self.release()

    @classmethod
    @asynccontextmanager
    async def scope(
        cls,
        registry: EntityRegistry,
        connection_manager: ConnectionManager,
        shared_database: Any,
        tenant_id: Optional[str] = None,
    ) -> AsyncIterator["RequestDataContext"]:
        """Open a context and release it when the block exits, even on error."""
        context = cls(registry, connection_manager, shared_database, tenant_id)
        try:
            yield context
        finally:
            context.release()

    def __repr__(self) -> str:
        return f"RequestDataContext(tenant_id={self._tenant_id!r}, state={self._state.value})"
