"""
# Database Package

The `vehicle_platform_database.database` package is the **multi-tenant data-access core** of
the Vehicle Platform, built on **Motor** (async MongoDB driver).

## Package Architecture

- **`entity_registry`**: `EntityRegistry`, the startup-time catalog classifying every entity
  as *shared* (main database) or *tenant* (company database).
- **`entity_catalog`**: The platform's default entity definitions and tenant indexes.
- **`manager`**: `DatabaseManager`, the process-wide shared connection.
- **`tenant_connector`**: Opens verified connections to `company_<id>` databases.
- **`connection_manager`**: `ConnectionManager`, the reference-counted LRU cache of tenant
  connections.
- **`request_context`**: `RequestDataContext`, the per-request resolver business logic uses.

## Module-level Singletons

`entity_registry`, `db_manager` and `connection_manager` are created at import time without
any I/O. The application lifespan registers the catalog, freezes the registry, connects the
shared database and starts the tenant sweeper.

```python
from vehicle_platform_database.database import RequestDataContext, connection_manager, db_manager, entity_registry

async with RequestDataContext(entity_registry, connection_manager, db_manager.database, "acme") as context:
    handle = await context.resolve("Vehicle")
    await handle.collection.find_one({})
```
"""

from vehicle_platform_database.database.connection_manager import ConnectionManager, connection_manager
from vehicle_platform_database.database.entity_registry import EntityRegistry, EntityScope, entity_registry
from vehicle_platform_database.database.manager import DatabaseManager, db_manager
from vehicle_platform_database.database.request_context import BoundHandle, ContextState, RequestDataContext

__all__ = [
    "BoundHandle",
    "ConnectionManager",
    "ContextState",
    "DatabaseManager",
    "EntityRegistry",
    "EntityScope",
    "RequestDataContext",
    "connection_manager",
    "db_manager",
    "entity_registry",
]
