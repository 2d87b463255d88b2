"""
# Main Database Management Module

This module owns the **process-wide shared ("main") MongoDB connection** of the
Vehicle Platform. Shared entities (platform users, makes, models, plans, master admins)
live here; company data lives in per-tenant databases managed by `ConnectionManager`.

## Architecture Overview

```
┌─────────────────────────────────────────────────────────────┐
│                    Data-Access Core                          │
├─────────────────────────────────────────────────────────────┤
│                                                              │
│   ┌──────────────┐      ┌───────────────────────────────┐    │
│   │  Request     │─────▶│      RequestDataContext       │    │
│   │  Pipeline    │      └──────┬─────────────────┬──────┘    │
│   └──────────────┘             │ shared          │ tenant    │
│                   ┌────────────▼─────┐   ┌───────▼────────┐  │
│                   │ DatabaseManager  │   │ Connection     │  │
│                   │ (main database)  │   │ Manager        │  │
│                   └────────────┬─────┘   └───────┬────────┘  │
│                                ▼                 ▼           │
│                        vehicle-platform    company_<id> ...  │
└─────────────────────────────────────────────────────────────┘
```

## Key Features

### 1. Connection Lifecycle Management
- **Async Initialization**: Connection established during application startup
- **Exponential Backoff**: Up to 3 attempts (waiting 1s, then 2s) for transient failures
- **Graceful Shutdown**: `disconnect()` closes the pool

### 2. Isolation Guard
`get_collection()` refuses collections that belong to tenant-scoped entities. Company data
can only be reached through a `RequestDataContext`, never by opening the main database
directly from a route handler.

### 3. Observability
- **Performance Logging**: Connection and ping latency via `[DB_PERFORMANCE]`
- **Health Checks**: `health_check()` for liveness endpoints

## Usage Examples

```python
from vehicle_platform_database.database import db_manager

# In FastAPI lifespan startup
await db_manager.connect()

# Shared collection
admins = db_manager.get_collection("masteradmins")

# In FastAPI lifespan shutdown
await db_manager.disconnect()
```

## Configuration

- `MONGODB_URL`, `MONGODB_DATABASE`
- `MONGODB_USERNAME`, `MONGODB_PASSWORD`
- `MAIN_DB_POOL_SIZE`
- `MONGODB_SERVER_SELECTION_TIMEOUT`, `MONGODB_CONNECTION_TIMEOUT`, `MONGODB_SOCKET_TIMEOUT`

## Thread Safety

The manager is designed for **asyncio**; all methods must be called from the same event loop.
"""

import asyncio
import time
from typing import Any, Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from vehicle_platform_database.config import Settings, settings as default_settings
from vehicle_platform_database.database.entity_registry import EntityRegistry, entity_registry
from vehicle_platform_database.database.exceptions import SharedDatabaseUnavailableError, TenantContextRequiredError
from vehicle_platform_database.database.tenant_connector import build_tenant_uri
from vehicle_platform_database.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")


class DatabaseManager:
    """
    Manages the shared MongoDB connection.

    **Lifecycle:**
    1. **Instantiation**: Create manager (sets `client=None`, `database=None`)
    2. **Connection**: Call `connect()` to establish the MongoDB connection
    3. **Operations**: Shared entities are resolved against `database`
    4. **Health Monitoring**: Periodic `health_check()` calls
    5. **Shutdown**: Call `disconnect()`

    The shared connection is never reference-counted or evicted: it lives for the
    process lifetime.

    Attributes:
        client (`Optional[AsyncIOMotorClient]`): Motor client, `None` until connected.
        database (`Optional[AsyncIOMotorDatabase]`): Main database, `None` until connected.
        registry (`Optional[EntityRegistry]`): Used to refuse tenant-scoped collections.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        registry: Optional[EntityRegistry] = None,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
    ):
        """
        Initialize the DatabaseManager with empty connection state.

        Note:
            This is a lightweight operation (no network I/O). Connection happens in `connect()`.
        """
        self.config = config if config is not None else default_settings
        self.registry = registry
        self.client_factory = client_factory
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3

    def _connection_string(self) -> str:
        password = self.config.MONGODB_PASSWORD
        if password is not None and hasattr(password, "get_secret_value"):
            password = password.get_secret_value()
        if self.config.MONGODB_USERNAME and password:
            db_logger.debug("Using authenticated connection to MongoDB")
            return build_tenant_uri(
                self.config.MONGODB_URL, self.config.MONGODB_DATABASE, self.config.MONGODB_USERNAME, password
            )
        db_logger.debug("Using unauthenticated connection to MongoDB")
        return self.config.MONGODB_URL

    async def connect(self):
        """
        Establish the shared MongoDB connection with exponential backoff retry logic.

        Steps: build connection string (credentials injected from settings), create the
        Motor client with the main pool size, ping. Up to 3 attempts are made with
        increasing delays (1s, 2s).

        Raises:
            `ServerSelectionTimeoutError`: If MongoDB is unreachable after all attempts.
            `ConnectionFailure`: If authentication fails or the connection is refused.
            `ConnectionError` / `TimeoutError`: For lower-level network errors.

        Note:
            Idempotent: a no-op when already connected.
        """
        if self.client is not None and self.database is not None:
            return

        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                db_logger.info(
                    "MongoDB connection config - Database: %s, MaxPool: %d, ServerTimeout: %dms, ConnTimeout: %dms",
                    self.config.MONGODB_DATABASE,
                    self.config.MAIN_DB_POOL_SIZE,
                    self.config.MONGODB_SERVER_SELECTION_TIMEOUT,
                    self.config.MONGODB_CONNECTION_TIMEOUT,
                )

                client = self.client_factory(
                    self._connection_string(),
                    serverSelectionTimeoutMS=self.config.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=self.config.MONGODB_CONNECTION_TIMEOUT,
                    socketTimeoutMS=self.config.MONGODB_SOCKET_TIMEOUT,
                    maxPoolSize=self.config.MAIN_DB_POOL_SIZE,
                )

                ping_start = time.time()
                try:
                    await client.admin.command("ping")
                except BaseException:
                    client.close()
                    raise
                ping_duration = time.time() - ping_start

                self.client = client
                self.database = client[self.config.MONGODB_DATABASE]

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info("Successfully connected to MongoDB database: %s", self.config.MONGODB_DATABASE)
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    total_duration = time.time() - start_time
                    db_logger.error("All connection attempts failed after %.3fs", total_duration)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

            except (ConnectionError, TimeoutError) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.error("Connection error after %.3fs", attempt_duration)
                db_logger.error("Connection error connecting to MongoDB: %s", e)
                raise

    async def disconnect(self):
        """
        Gracefully disconnect from MongoDB and close the pool.

        Note:
            Safe to call when not connected (logs a warning). After disconnection both
            `client` and `database` are reset; call `connect()` to reconnect.
        """
        start_time = time.time()
        db_logger.info("Starting MongoDB disconnection process")

        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return

        try:
            self.client.close()
            duration = time.time() - start_time
            perf_logger.info("MongoDB disconnection completed in %.3fs", duration)
            db_logger.info("Successfully disconnected from MongoDB")
        except Exception as e:
            duration = time.time() - start_time
            perf_logger.error("MongoDB disconnection failed after %.3fs", duration)
            db_logger.error("Error during MongoDB disconnection: %s", e)
            raise
        finally:
            self.client = None
            self.database = None

    async def health_check(self) -> bool:
        """
        Verify MongoDB connection health with a lightweight ping.

        Returns:
            `bool`: `True` if the main database responds, `False` otherwise (never raises).
        """
        start_time = time.time()
        health_logger.debug("Starting database health check")

        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False

        try:
            await self.client.admin.command("ping")
        except (PyMongoError, ConnectionError, TimeoutError) as e:
            duration = time.time() - start_time
            perf_logger.warning("Database health check failed after %.3fs", duration)
            health_logger.error("Database health check failed: %s", e)
            return False

        perf_logger.debug("Database health check completed successfully in %.3fs", time.time() - start_time)
        return True

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Return the main database handle.

        Raises:
            `SharedDatabaseUnavailableError`: If `connect()` has not been called.
        """
        if self.database is None:
            raise SharedDatabaseUnavailableError()
        return self.database

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Retrieve a shared collection by name from the main database.

        Args:
            collection_name (`str`): Collection name, e.g. `"users"`, `"makes"`.

        Returns:
            `AsyncIOMotorCollection`: The collection on the main database.

        Raises:
            `TenantContextRequiredError`: If the collection belongs to a tenant-scoped
                entity. Company data must be resolved through `RequestDataContext`.
            `SharedDatabaseUnavailableError`: If the database connection has not been established.
        """
        if self.registry is not None:
            descriptor = self.registry.find_by_collection(collection_name)
            if descriptor is not None and descriptor.is_tenant_scoped:
                db_logger.error(
                    "Refused main-database access to tenant-scoped collection %s (entity %s)",
                    collection_name,
                    descriptor.name,
                )
                raise TenantContextRequiredError(descriptor.name)
        return self.get_database()[collection_name]


# Global instance
db_manager = DatabaseManager(registry=entity_registry)
