"""Tests for the tenant connection cache: reference counting, single-flight creation and eviction."""

import asyncio

import pytest

from vehicle_platform_database.database.connection_manager import ConnectionManager
from vehicle_platform_database.database.exceptions import (
    InvalidTenantIdError,
    TenantConnectionError,
    TenantContextRequiredError,
)


# ============================================================================
# Acquire / release
# ============================================================================


@pytest.mark.asyncio
async def test_acquire_creates_then_reuses(manager, connector):
    first = await manager.acquire("acme")
    second = await manager.acquire("acme")

    assert first is second
    assert connector.calls == ["acme"]
    assert manager.active_request_count("acme") == 2
    assert manager.is_cached("acme")
    assert len(manager) == 1


@pytest.mark.asyncio
async def test_release_decrements_but_keeps_connection(manager, connector):
    connection = await manager.acquire("acme")
    manager.release("acme")

    assert manager.active_request_count("acme") == 0
    assert manager.is_cached("acme")
    assert not connection.closed


@pytest.mark.asyncio
async def test_unmatched_release_never_goes_negative(manager):
    manager.release("ghost")
    await manager.acquire("acme")
    manager.release("acme")
    manager.release("acme")
    manager.release("acme")

    assert manager.active_request_count("acme") == 0
    assert manager.active_request_count("ghost") == 0


@pytest.mark.asyncio
async def test_count_tracks_acquires_minus_releases(manager):
    operations = ["acquire", "acquire", "release", "acquire", "release", "release", "release", "acquire"]
    expected = 0
    for operation in operations:
        if operation == "acquire":
            await manager.acquire("acme")
            expected += 1
        else:
            manager.release("acme")
            expected = max(expected - 1, 0)
        assert manager.active_request_count("acme") == expected
        assert manager.active_request_count("acme") >= 0


@pytest.mark.asyncio
async def test_empty_tenant_id_requires_context(manager):
    with pytest.raises(TenantContextRequiredError):
        await manager.acquire("")
    with pytest.raises(TenantContextRequiredError):
        await manager.acquire(None)


def test_capacity_must_be_positive(connector):
    with pytest.raises(ValueError):
        ConnectionManager(connector, capacity=0)


# ============================================================================
# Single-flight creation
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_acquires_open_one_connection(manager, connector):
    connector.gate = asyncio.Event()

    tasks = [asyncio.create_task(manager.acquire("acme")) for _ in range(5)]
    await asyncio.sleep(0)
    assert manager.stats().pending_creations == 1

    connector.gate.set()
    connections = await asyncio.gather(*tasks)

    assert connector.calls == ["acme"]
    assert all(connection is connections[0] for connection in connections)
    assert manager.active_request_count("acme") == 5

    stats = manager.stats()
    assert stats.cache_misses == 1
    assert stats.cache_hits == 4
    assert stats.pending_creations == 0


@pytest.mark.asyncio
async def test_concurrent_acquires_for_different_tenants_do_not_block(manager, connector):
    connector.gate = asyncio.Event()
    slow = asyncio.create_task(manager.acquire("slow"))
    await asyncio.sleep(0)

    connector.gate = None
    fast = await manager.acquire("fast")

    assert fast.tenant_id == "fast"
    assert not slow.done()
    slow.cancel()
    with pytest.raises(asyncio.CancelledError):
        await slow


@pytest.mark.asyncio
async def test_creation_failure_reaches_every_waiter(manager, connector):
    connector.gate = asyncio.Event()
    connector.fail_next("acme")

    tasks = [asyncio.create_task(manager.acquire("acme")) for _ in range(3)]
    await asyncio.sleep(0)
    connector.gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(result, TenantConnectionError) for result in results)
    assert all(result.tenant_id == "acme" for result in results)
    assert connector.calls == ["acme"]
    assert not manager.is_cached("acme")
    assert manager.stats().pending_creations == 0


@pytest.mark.asyncio
async def test_unexpected_connector_error_becomes_tenant_connection_error(manager, connector):
    connector.fail_next("acme", RuntimeError("boom"))

    with pytest.raises(TenantConnectionError) as exc_info:
        await manager.acquire("acme")

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert not manager.is_cached("acme")


@pytest.mark.asyncio
async def test_invalid_tenant_id_is_not_reported_as_unreachable(manager, connector):
    connector.fail_next("acme", InvalidTenantIdError("acme"))

    with pytest.raises(InvalidTenantIdError):
        await manager.acquire("acme")

    assert not manager.is_cached("acme")
    assert manager.stats().pending_creations == 0


@pytest.mark.asyncio
async def test_cancelled_creator_lets_waiters_retry(manager, connector):
    connector.gate = asyncio.Event()

    creator = asyncio.create_task(manager.acquire("acme"))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(manager.acquire("acme"))
    await asyncio.sleep(0)

    creator.cancel()
    with pytest.raises(asyncio.CancelledError):
        await creator

    connector.gate.set()
    connection = await waiter

    assert connection.tenant_id == "acme"
    assert connector.calls == ["acme", "acme"]
    assert manager.active_request_count("acme") == 1


# ============================================================================
# Eviction
# ============================================================================


@pytest.mark.asyncio
async def test_referenced_entries_are_never_evicted(manager, connector):
    for tenant in ("a", "b", "c", "d"):
        await manager.acquire(tenant)

    # Every entry is in use, so the cache grows past its capacity
    assert len(manager) == 4
    assert all(not connector.created[tenant][0].closed for tenant in ("a", "b", "c", "d"))

    manager.release("b")
    await manager.evict_to_capacity()

    assert not manager.is_cached("b")
    assert connector.created["b"][0].closed
    assert len(manager) == 3


@pytest.mark.asyncio
async def test_least_recently_accessed_idle_entry_is_evicted(connector, clock):
    manager = ConnectionManager(connector, capacity=2, idle_timeout=0, clock=clock)

    await manager.acquire("a")
    clock.advance(1)
    manager.release("a")
    clock.advance(1)
    await manager.acquire("b")
    clock.advance(1)
    manager.release("b")
    clock.advance(1)
    await manager.acquire("c")

    assert not manager.is_cached("a")
    assert manager.is_cached("b")
    assert manager.is_cached("c")
    assert connector.created["a"][0].closed
    assert manager.stats().evictions == 1


@pytest.mark.asyncio
async def test_recent_access_protects_from_eviction(connector, clock):
    manager = ConnectionManager(connector, capacity=2, idle_timeout=0, clock=clock)

    await manager.acquire("a")
    manager.release("a")
    await manager.acquire("b")
    manager.release("b")
    # Touch "a" again so "b" becomes least recently accessed
    await manager.acquire("a")
    manager.release("a")
    await manager.acquire("c")

    assert manager.is_cached("a")
    assert not manager.is_cached("b")


@pytest.mark.asyncio
async def test_sweep_removes_idle_entries_only(manager, connector, clock):
    await manager.acquire("idle")
    manager.release("idle")
    await manager.acquire("busy")

    clock.advance(61)
    evicted = await manager.sweep()

    assert evicted == ["idle"]
    assert connector.created["idle"][0].closed
    assert manager.is_cached("busy")
    assert not connector.created["busy"][0].closed


@pytest.mark.asyncio
async def test_sweep_keeps_recently_used_entries(manager, clock):
    await manager.acquire("acme")
    manager.release("acme")
    clock.advance(30)

    assert await manager.sweep() == []
    assert manager.is_cached("acme")


@pytest.mark.asyncio
async def test_evicted_tenant_is_reopened_on_next_acquire(manager, connector, clock):
    await manager.acquire("acme")
    manager.release("acme")
    clock.advance(61)
    await manager.sweep()

    connection = await manager.acquire("acme")

    assert connector.calls == ["acme", "acme"]
    assert connection is connector.created["acme"][1]
    assert manager.active_request_count("acme") == 1


@pytest.mark.asyncio
async def test_close_errors_do_not_escape_eviction(manager, connector, clock):
    await manager.acquire("acme")
    manager.release("acme")

    async def failing_close():
        raise RuntimeError("socket already gone")

    connector.created["acme"][0].close = failing_close
    clock.advance(61)

    assert await manager.sweep() == ["acme"]
    assert not manager.is_cached("acme")


@pytest.mark.asyncio
async def test_background_sweeper(manager, clock):
    await manager.acquire("acme")
    manager.release("acme")
    clock.advance(61)

    manager.start_sweeper(interval=0.01)
    for _ in range(50):
        if not manager.is_cached("acme"):
            break
        await asyncio.sleep(0.01)
    await manager.stop_sweeper()

    assert not manager.is_cached("acme")


# ============================================================================
# Stats and shutdown
# ============================================================================


@pytest.mark.asyncio
async def test_stats_snapshot(manager):
    assert manager.stats().hit_rate == 0.0

    await manager.acquire("a")
    await manager.acquire("a")
    await manager.acquire("b")
    manager.release("b")

    stats = manager.stats()
    assert stats.cached_tenant_count == 2
    assert stats.total_active_requests == 2
    assert stats.total_requests == 3
    assert stats.cache_hits == 1
    assert stats.hit_rate == pytest.approx(1 / 3)
    assert stats.connections_created == 2
    assert stats.capacity == 3
    details = {detail.tenant_id: detail for detail in stats.tenants}
    assert details["a"].active_requests == 2
    assert details["b"].is_idle


@pytest.mark.asyncio
async def test_close_all_closes_everything_and_rejects_acquires(manager, connector):
    await manager.acquire("busy")
    await manager.acquire("idle")
    manager.release("idle")

    await manager.close_all()

    assert manager.closed
    assert len(manager) == 0
    assert connector.created["busy"][0].closed
    assert connector.created["idle"][0].closed
    with pytest.raises(TenantConnectionError):
        await manager.acquire("busy")
    # Late releases from in-flight requests are harmless
    manager.release("busy")


@pytest.mark.asyncio
async def test_creation_completing_after_shutdown_is_closed(manager, connector):
    connector.gate = asyncio.Event()
    pending = asyncio.create_task(manager.acquire("acme"))
    await asyncio.sleep(0)

    await manager.close_all()
    connector.gate.set()

    with pytest.raises(TenantConnectionError):
        await pending
    assert connector.created["acme"][0].closed
    assert len(manager) == 0
