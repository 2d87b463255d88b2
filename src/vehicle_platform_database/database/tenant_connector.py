"""
Tenant database connector.

Opens a dedicated Motor client for one company's isolated database
(`<TENANT_DB_PREFIX><tenant_id>`, e.g. `company_acme`) on the same deployment as the
main database. The connector only opens and verifies connections; caching,
reference counting and eviction belong to `ConnectionManager`.

```python
connector = MotorTenantConnector(settings)
connection = await connector("acme")
vehicles = connection.database["vehicles"]
...
await connection.close()
```
"""

import re
import time
from typing import Any, Callable, Optional
from urllib.parse import quote_plus, urlsplit, urlunsplit

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from vehicle_platform_database.config import Settings, settings as default_settings
from vehicle_platform_database.database.exceptions import InvalidTenantIdError, TenantConnectionError
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[TenantConnector]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
# MongoDB database names are limited to 64 bytes
MAX_DATABASE_NAME_LENGTH = 63


def tenant_database_name(tenant_id: str, prefix: str = "company_") -> str:
    """
    Build the isolated database name for a tenant.

    Raises:
        InvalidTenantIdError: If the tenant id cannot be used inside a database name.
    """
    tenant_id = str(tenant_id)
    if not TENANT_ID_PATTERN.match(tenant_id):
        raise InvalidTenantIdError(tenant_id)
    name = f"{prefix}{tenant_id}"
    if len(name.encode("utf-8")) > MAX_DATABASE_NAME_LENGTH:
        raise InvalidTenantIdError(tenant_id, f"Tenant database name too long: {name}")
    return name


def build_tenant_uri(
    mongodb_url: str,
    database_name: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> str:
    """
    Point a MongoDB connection string at a different database, keeping hosts and options.

    `mongodb://db:27017/vehicle-platform?retryWrites=true` with `company_acme` becomes
    `mongodb://db:27017/company_acme?retryWrites=true`. Credentials are injected only when
    the URL does not already carry them.
    """
    parts = urlsplit(mongodb_url)
    netloc = parts.netloc
    if username and password and "@" not in netloc:
        netloc = f"{quote_plus(username)}:{quote_plus(password)}@{netloc}"
    return urlunsplit((parts.scheme, netloc, f"/{database_name}", parts.query, ""))


class TenantConnection:
    """
    Live connection to one tenant's isolated database.

    Attributes:
        tenant_id (`str`): Tenant the connection is bound to.
        database_name (`str`): Name of the tenant database.
        client (`AsyncIOMotorClient`): Dedicated client (own connection pool).
        database (`AsyncIOMotorDatabase`): The tenant database handle.
    """

    def __init__(self, tenant_id: str, client: Any, database_name: str):
        self.tenant_id = tenant_id
        self.client = client
        self.database_name = database_name
        self.database: AsyncIOMotorDatabase = client[database_name]
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.client.close()
        self.closed = True
        logger.info("Closed tenant database connection: %s", self.database_name)

    def __repr__(self) -> str:
        return f"TenantConnection(tenant_id={self.tenant_id!r}, database={self.database_name!r}, closed={self.closed})"


class MotorTenantConnector:
    """
    Opens verified `TenantConnection`s with the company pool configuration.

    Args:
        config: Settings to read the URL, credentials, pool size and timeouts from.
        client_factory: Callable creating the Motor client; replaced in tests.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
    ):
        self.config = config if config is not None else default_settings
        self.client_factory = client_factory

    def _credentials(self):
        password = self.config.MONGODB_PASSWORD
        if password is not None and hasattr(password, "get_secret_value"):
            password = password.get_secret_value()
        return self.config.MONGODB_USERNAME, password

    async def __call__(self, tenant_id: str) -> TenantConnection:
        """
        Open and ping a connection to the tenant's database.

        Raises:
            InvalidTenantIdError: If the tenant id is not a valid database-name fragment.
            TenantConnectionError: If the tenant store is unreachable.
        """
        database_name = tenant_database_name(tenant_id, self.config.TENANT_DB_PREFIX)
        username, password = self._credentials()
        uri = build_tenant_uri(self.config.MONGODB_URL, database_name, username, password)

        start_time = time.time()
        client = self.client_factory(
            uri,
            maxPoolSize=self.config.COMPANY_DB_POOL_SIZE,
            serverSelectionTimeoutMS=self.config.MONGODB_SERVER_SELECTION_TIMEOUT,
            connectTimeoutMS=self.config.MONGODB_CONNECTION_TIMEOUT,
            socketTimeoutMS=self.config.MONGODB_SOCKET_TIMEOUT,
        )
        try:
            await client.admin.command("ping")
        except (PyMongoError, ConnectionError, TimeoutError) as e:
            client.close()
            duration = time.time() - start_time
            perf_logger.warning("Tenant connection to %s failed after %.3fs", database_name, duration)
            logger.error("Failed to create connection for %s: %s", database_name, e)
            raise TenantConnectionError(tenant_id, f"Database connection failed: {database_name}") from e

        duration = time.time() - start_time
        perf_logger.info("Tenant connection to %s established in %.3fs", database_name, duration)
        logger.info("Company database connection created: %s", database_name)
        return TenantConnection(tenant_id, client, database_name)
