"""
Error taxonomy for the multi-tenant data-access core.

```
DataAccessError
├── EntityRegistryError             registry misconfiguration (fatal at startup)
│   ├── DuplicateEntityError
│   ├── UnknownEntityError
│   └── RegistryFrozenError
├── SharedDatabaseUnavailableError  main database not connected (HTTP 503)
├── InvalidTenantIdError            tenant id unusable as a database name (HTTP 400)
├── TenantConnectionError           tenant store unreachable (retryable, HTTP 503)
├── TenantContextRequiredError      tenant entity without a tenant (HTTP 400)
└── ContextAlreadyReleasedError     resolve after release (HTTP 500)
```
"""

from typing import Optional


class DataAccessError(Exception):
    """Base class for all data-access core errors."""


class EntityRegistryError(DataAccessError):
    """Raised for entity registry misconfiguration."""


class DuplicateEntityError(EntityRegistryError):
    """Raised when an entity name is registered twice with a conflicting definition."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Entity already registered with a different definition: {name}")


class UnknownEntityError(EntityRegistryError):
    """Raised when resolving an entity name that was never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Entity not registered: {name}")


class RegistryFrozenError(EntityRegistryError):
    """Raised when registering after the startup phase has ended."""


class SharedDatabaseUnavailableError(DataAccessError, ConnectionError):
    """Raised when the main database is used before `connect()` succeeded."""

    def __init__(self, message: str = "Database not connected. Call connect() first."):
        super().__init__(message)


class InvalidTenantIdError(DataAccessError, ValueError):
    """Raised when a tenant id cannot be turned into a database name."""

    def __init__(self, tenant_id: Optional[str], message: Optional[str] = None):
        self.tenant_id = tenant_id
        super().__init__(message or f"Invalid tenant id for database name: {tenant_id!r}")


class TenantConnectionError(DataAccessError):
    """Raised when a tenant's isolated store cannot be reached."""

    def __init__(self, tenant_id: Optional[str], message: Optional[str] = None):
        self.tenant_id = tenant_id
        super().__init__(message or f"Tenant data unavailable: {tenant_id}")


class TenantContextRequiredError(DataAccessError):
    """Raised when a tenant-scoped entity is requested without a tenant."""

    def __init__(self, entity_name: Optional[str] = None, message: Optional[str] = None):
        self.entity_name = entity_name
        if message is None:
            message = "Company context required for this operation"
            if entity_name:
                message = f"{message}: {entity_name}"
        super().__init__(message)


class ContextAlreadyReleasedError(DataAccessError):
    """Raised when a request data context is used after it was released."""

    def __init__(self, entity_name: Optional[str] = None):
        self.entity_name = entity_name
        super().__init__(f"Request data context already released (entity: {entity_name})")
