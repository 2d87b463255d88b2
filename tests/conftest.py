"""
Shared fixtures for the data-access core tests.

No MongoDB is needed: `FakeConnector` stands in for `MotorTenantConnector` and hands out
`FakeConnection`s whose databases are `MagicMock`s.
"""

import asyncio
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from vehicle_platform_database.database.connection_manager import ConnectionManager
from vehicle_platform_database.database.entity_registry import EntityRegistry, EntityScope
from vehicle_platform_database.database.exceptions import TenantConnectionError


class FakeConnection:
    """Tenant connection double with an async `close()`."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self.database = MagicMock(name=f"company_{tenant_id}")
        self.closed = False
        self.close_calls = 0

    async def close(self):
        self.close_calls += 1
        self.closed = True


class FakeConnector:
    """
    Connector double.

    Attributes:
        calls: Tenant ids in the order connections were requested.
        failures: Tenant ids whose next connection attempt fails.
        gate: When set, every connection attempt waits for it before completing.
    """

    def __init__(self):
        self.calls: List[str] = []
        self.created: Dict[str, List[FakeConnection]] = {}
        self.failures: Dict[str, Exception] = {}
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, tenant_id: str) -> FakeConnection:
        self.calls.append(tenant_id)
        if self.gate is not None:
            await self.gate.wait()
        error = self.failures.pop(tenant_id, None)
        if error is not None:
            raise error
        connection = FakeConnection(tenant_id)
        self.created.setdefault(tenant_id, []).append(connection)
        return connection

    def fail_next(self, tenant_id: str, error: Optional[Exception] = None):
        self.failures[tenant_id] = error or TenantConnectionError(tenant_id, f"Database connection failed: company_{tenant_id}")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(connector, clock):
    return ConnectionManager(connector, capacity=3, idle_timeout=60, clock=clock)


@pytest.fixture
def registry():
    registry = EntityRegistry()
    registry.register("MasterAdmin", EntityScope.SHARED)
    registry.register("Make", EntityScope.SHARED)
    registry.register("Vehicle", EntityScope.TENANT)
    registry.register("WorkshopQuote", EntityScope.TENANT)
    registry.freeze()
    return registry


@pytest.fixture
def shared_database():
    database = MagicMock(name="vehicle-platform")
    database.command = AsyncMock(return_value={"ok": 1})
    return database
