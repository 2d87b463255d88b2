"""
# Tenant Connection Manager

Owns the lifecycle of tenant-scoped database connections: lazy creation, caching,
reference counting and eviction.

## Lifecycle of an entry

```
acquire("acme")  ── miss ──▶ single-flight create ──▶ entry(count=1)
acquire("acme")  ── hit  ──▶ count=2
release("acme")            ▶ count=1
release("acme")            ▶ count=0   (idle, evictable)
sweep() / capacity         ▶ close + remove (only when count == 0)
```

## Guarantees

- **At most one entry per tenant.** Concurrent acquirers of an uncached tenant await the
  one in-flight creation instead of opening redundant connections.
- **Referenced entries are never evicted.** Eviction candidates are entries with
  `active_request_count == 0`, least recently accessed first. When every entry is
  referenced the cache temporarily exceeds its capacity.
- **No partial state on failure.** A failed creation leaves no entry behind; the error
  reaches every caller waiting on that creation, and the next acquire retries cleanly.
- **Release never closes.** Only eviction and shutdown close connections.

## Concurrency

Map lookups, inserts, counter updates and eviction selection run inside one lock that is
never held across an `await`. The network handshake and the closing of evicted
connections happen outside it, so one slow tenant never blocks the others.

## Usage

```python
manager = ConnectionManager(MotorTenantConnector(settings), capacity=50)

connection = await manager.acquire("acme")
try:
    await connection.database["vehicles"].find_one({})
finally:
    manager.release("acme")
```

Request code should not call the manager directly; `RequestDataContext` pairs every
acquire with exactly one release.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from vehicle_platform_database.config import settings
from vehicle_platform_database.database.exceptions import (
    InvalidTenantIdError,
    TenantConnectionError,
    TenantContextRequiredError,
)
from vehicle_platform_database.database.tenant_connector import MotorTenantConnector
from vehicle_platform_database.managers.logging_manager import get_logger
from vehicle_platform_database.models.connection_models import ConnectionStats, TenantConnectionDetail
from vehicle_platform_database.services.connection_metrics import connection_metrics

logger = get_logger(prefix="[ConnectionManager]")

ConnectionFactory = Callable[[str], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TenantConnectionEntry:
    """Cached connection of one tenant. Owned and mutated only by `ConnectionManager`."""

    tenant_id: str
    connection: Any
    last_accessed_monotonic: float
    active_request_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_accessed_at: datetime = field(default_factory=_utcnow)

    def touch(self, now: float) -> None:
        self.last_accessed_monotonic = now
        self.last_accessed_at = _utcnow()

    @property
    def is_idle(self) -> bool:
        return self.active_request_count == 0


class ConnectionManager:
    """
    Cache of live tenant connections with reference counting and LRU eviction.

    Args:
        connector: Async callable opening a connection for a tenant id. The returned
            object must provide `async close()`.
        capacity: Soft bound on cached tenants. Defaults to `MAX_COMPANY_CONNECTIONS`.
        idle_timeout: Seconds after which an unreferenced entry is removed by `sweep()`.
            `0` disables age-based eviction. Defaults to `TENANT_CONNECTION_IDLE_TIMEOUT`.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        connector: ConnectionFactory,
        capacity: Optional[int] = None,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._connector = connector
        self.capacity = capacity if capacity is not None else settings.MAX_COMPANY_CONNECTIONS
        if self.capacity <= 0:
            raise ValueError("capacity must be a positive integer")
        self.idle_timeout = idle_timeout if idle_timeout is not None else settings.TENANT_CONNECTION_IDLE_TIMEOUT
        self._clock = clock

        # Least recently accessed first
        self._entries: "OrderedDict[str, TenantConnectionEntry]" = OrderedDict()
        self._pending: Dict[str, "asyncio.Future[None]"] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._sweeper_task: Optional["asyncio.Task[None]"] = None

        self._total_requests = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._connections_created = 0
        self._evictions = 0

    async def acquire(self, tenant_id: str) -> Any:
        """
        Return the tenant's live connection and take one reference on it.

        Args:
            tenant_id: The tenant whose isolated store is needed.

        Returns:
            The cached (or newly opened) connection handle.

        Raises:
            TenantContextRequiredError: If `tenant_id` is empty.
            InvalidTenantIdError: If `tenant_id` cannot name a tenant database.
            TenantConnectionError: If the tenant store is unreachable or the manager is shut down.
        """
        if not tenant_id:
            raise TenantContextRequiredError(message="Tenant id is required to acquire a tenant connection")
        tenant_id = str(tenant_id)

        first_attempt = True
        while True:
            with self._lock:
                if self._closed:
                    raise TenantConnectionError(tenant_id, "Connection manager is shut down")
                if first_attempt:
                    self._total_requests += 1

                entry = self._entries.get(tenant_id)
                if entry is not None:
                    entry.active_request_count += 1
                    entry.touch(self._clock())
                    self._entries.move_to_end(tenant_id)
                    if first_attempt:
                        self._cache_hits += 1
                    return entry.connection

                pending = self._pending.get(tenant_id)
                if pending is None:
                    if first_attempt:
                        self._cache_misses += 1
                    pending = asyncio.get_running_loop().create_future()
                    self._pending[tenant_id] = pending
                    break

                # Another request is already opening this tenant's connection
                if first_attempt:
                    self._cache_hits += 1
            first_attempt = False

            try:
                await asyncio.shield(pending)
            except TenantConnectionError as e:
                connection_metrics.record_acquire_failure()
                raise TenantConnectionError(tenant_id, str(e)) from e
            # Creation finished (or was abandoned); look the entry up again

        return await self._create_entry(tenant_id, pending)

    async def _create_entry(self, tenant_id: str, pending: "asyncio.Future[None]") -> Any:
        try:
            connection = await self._connector(tenant_id)
        except asyncio.CancelledError:
            # Creator went away; let waiters retry on their own
            with self._lock:
                self._pending.pop(tenant_id, None)
            if not pending.done():
                pending.set_result(None)
            raise
        except Exception as e:
            if isinstance(e, (TenantConnectionError, InvalidTenantIdError)):
                error = e
            else:
                error = TenantConnectionError(tenant_id)
            with self._lock:
                self._pending.pop(tenant_id, None)
            if not pending.done():
                pending.set_exception(error)
                # Mark retrieved: with no waiters asyncio would report it as never retrieved
                pending.exception()
            connection_metrics.record_acquire_failure()
            logger.error("Failed to get tenant database connection for %s: %s", tenant_id, e)
            if error is e:
                raise
            raise error from e

        with self._lock:
            self._pending.pop(tenant_id, None)
            if self._closed:
                shutdown_error = TenantConnectionError(tenant_id, "Connection manager is shut down")
                evicted: List[TenantConnectionEntry] = []
            else:
                shutdown_error = None
                now = self._clock()
                self._entries[tenant_id] = TenantConnectionEntry(
                    tenant_id=tenant_id,
                    connection=connection,
                    last_accessed_monotonic=now,
                    active_request_count=1,
                )
                self._connections_created += 1
                evicted = self._select_capacity_evictions()

        if shutdown_error is not None:
            if not pending.done():
                pending.set_exception(shutdown_error)
                pending.exception()
            await self._close_connection(tenant_id, connection)
            raise shutdown_error

        if not pending.done():
            pending.set_result(None)
        connection_metrics.record_connection_created()
        logger.info("Tenant connection cached for %s (%d/%d)", tenant_id, len(self._entries), self.capacity)

        if evicted:
            try:
                await asyncio.shield(self._close_entries(evicted, reason="capacity"))
            except asyncio.CancelledError:
                # The caller never receives the connection, so give the reference back
                self.release(tenant_id)
                raise
        return connection

    def release(self, tenant_id: str) -> None:
        """
        Drop one reference on the tenant's entry, never going below zero.

        A release without a matching acquire is a caller bug: it is logged and ignored.
        The connection stays cached; only eviction closes it.
        """
        if not tenant_id:
            return
        tenant_id = str(tenant_id)
        with self._lock:
            entry = self._entries.get(tenant_id)
            if entry is None or entry.active_request_count == 0:
                unmatched = True
            else:
                unmatched = False
                entry.active_request_count -= 1
                entry.touch(self._clock())
                self._entries.move_to_end(tenant_id)
                remaining = entry.active_request_count
        if unmatched:
            logger.warning("Release without matching acquire for tenant %s ignored", tenant_id)
            return
        logger.debug("Active requests decremented for tenant %s: %d", tenant_id, remaining)

    def _select_capacity_evictions(self) -> List[TenantConnectionEntry]:
        # Caller holds self._lock
        excess = len(self._entries) - self.capacity
        if excess <= 0:
            return []
        evicted: List[TenantConnectionEntry] = []
        for tenant_id, entry in list(self._entries.items()):
            if excess <= 0:
                break
            if entry.active_request_count == 0:
                del self._entries[tenant_id]
                evicted.append(entry)
                excess -= 1
        if excess > 0:
            logger.warning(
                "Tenant connection cache over capacity (%d/%d): remaining entries are in use",
                len(self._entries),
                self.capacity,
            )
        return evicted

    def _select_idle_evictions(self, now: float) -> List[TenantConnectionEntry]:
        # Caller holds self._lock
        if not self.idle_timeout:
            return []
        evicted: List[TenantConnectionEntry] = []
        for tenant_id, entry in list(self._entries.items()):
            if entry.active_request_count == 0 and now - entry.last_accessed_monotonic >= self.idle_timeout:
                del self._entries[tenant_id]
                evicted.append(entry)
        return evicted

    async def evict_to_capacity(self) -> List[str]:
        """Evict idle entries, least recently accessed first, until within capacity."""
        with self._lock:
            evicted = self._select_capacity_evictions()
        await self._close_entries(evicted, reason="capacity")
        return [entry.tenant_id for entry in evicted]

    async def sweep(self) -> List[str]:
        """
        Periodic maintenance: remove entries idle longer than `idle_timeout`, then
        enforce capacity.

        Returns:
            List[str]: Tenant ids whose connections were closed.
        """
        with self._lock:
            idle = self._select_idle_evictions(self._clock())
            over_capacity = self._select_capacity_evictions()
        await self._close_entries(idle, reason="idle")
        await self._close_entries(over_capacity, reason="capacity")
        evicted = [entry.tenant_id for entry in idle + over_capacity]
        if evicted:
            logger.info("Sweep evicted %d tenant connections: %s", len(evicted), ", ".join(evicted))
        connection_metrics.update_from_stats(self.stats())
        return evicted

    async def _close_entries(self, entries: Iterable[TenantConnectionEntry], reason: str) -> None:
        for entry in entries:
            with self._lock:
                self._evictions += 1
            connection_metrics.record_eviction(reason)
            logger.info("Evicting tenant connection %s (%s)", entry.tenant_id, reason)
            await self._close_connection(entry.tenant_id, entry.connection)

    async def _close_connection(self, tenant_id: str, connection: Any) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.error("Error closing connection for tenant %s: %s", tenant_id, e)

    def stats(self) -> ConnectionStats:
        """Read-only snapshot of the cache."""
        with self._lock:
            details = [
                TenantConnectionDetail(
                    tenant_id=entry.tenant_id,
                    active_requests=entry.active_request_count,
                    last_accessed_at=entry.last_accessed_at,
                    created_at=entry.created_at,
                    is_idle=entry.is_idle,
                )
                for entry in self._entries.values()
            ]
            total = self._total_requests
            return ConnectionStats(
                cached_tenant_count=len(details),
                total_active_requests=sum(detail.active_requests for detail in details),
                hit_rate=(self._cache_hits / total) if total else 0.0,
                total_requests=total,
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
                connections_created=self._connections_created,
                evictions=self._evictions,
                pending_creations=len(self._pending),
                capacity=self.capacity,
                tenants=details,
            )

    def active_request_count(self, tenant_id: str) -> int:
        with self._lock:
            entry = self._entries.get(str(tenant_id))
            return entry.active_request_count if entry is not None else 0

    def is_cached(self, tenant_id: str) -> bool:
        with self._lock:
            return str(tenant_id) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def start_sweeper(self, interval: Optional[float] = None) -> "asyncio.Task[None]":
        """Start the periodic sweep in the running event loop."""
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return self._sweeper_task
        interval = interval if interval is not None else settings.TENANT_CONNECTION_SWEEP_INTERVAL
        self._sweeper_task = asyncio.create_task(self._sweep_periodically(interval))
        logger.info("Started tenant connection sweeper (interval: %ss)", interval)
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        task, self._sweeper_task = self._sweeper_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped tenant connection sweeper")

    async def _sweep_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Tenant connection sweep failed: %s", e, exc_info=True)

    async def close_all(self) -> None:
        """
        Shut down: close every cached connection, referenced or not, and reject
        further acquires.
        """
        logger.info("Closing all tenant database connections...")
        await self.stop_sweeper()
        with self._lock:
            self._closed = True
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            if entry.active_request_count:
                logger.warning(
                    "Closing tenant connection %s with %d active requests",
                    entry.tenant_id,
                    entry.active_request_count,
                )
        await asyncio.gather(*(self._close_connection(e.tenant_id, e.connection) for e in entries))
        logger.info("All tenant database connections closed (%d)", len(entries))


def create_connection_manager() -> ConnectionManager:
    """Build the application's manager from settings with the Motor connector."""
    return ConnectionManager(
        MotorTenantConnector(settings),
        capacity=settings.MAX_COMPANY_CONNECTIONS,
        idle_timeout=settings.TENANT_CONNECTION_IDLE_TIMEOUT,
    )


# Global instance
connection_manager = create_connection_manager()
