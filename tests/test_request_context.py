"""Tests for per-request entity resolution and release."""

import asyncio

import pytest

from vehicle_platform_database.database.entity_registry import EntityScope
from vehicle_platform_database.database.exceptions import (
    ContextAlreadyReleasedError,
    DataAccessError,
    SharedDatabaseUnavailableError,
    TenantConnectionError,
    TenantContextRequiredError,
    UnknownEntityError,
)
from vehicle_platform_database.database.request_context import ContextState, RequestDataContext


# ============================================================================
# Resolution
# ============================================================================


@pytest.mark.asyncio
async def test_shared_entity_resolves_without_tenant(registry, manager, connector, shared_database):
    """A master admin request reads shared data without touching tenant connections."""
    context = RequestDataContext(registry, manager, shared_database)

    handle = await context.resolve("MasterAdmin")

    assert handle.database is shared_database
    assert handle.tenant_id is None
    assert handle.scope is EntityScope.SHARED
    assert handle.collection is shared_database["masteradmins"]
    assert connector.calls == []
    assert context.state is ContextState.CREATED


@pytest.mark.asyncio
async def test_shared_entity_never_takes_tenant_reference(registry, manager, connector, shared_database):
    context = RequestDataContext(registry, manager, shared_database, "acme")

    await context.resolve("Make")

    assert connector.calls == []
    assert not context.is_tenant_bound


@pytest.mark.asyncio
async def test_tenant_entity_binds_tenant_database(registry, manager, connector, shared_database):
    context = RequestDataContext(registry, manager, shared_database, "acme")

    handle = await context.resolve("Vehicle")

    connection = connector.created["acme"][0]
    assert handle.database is connection.database
    assert handle.tenant_id == "acme"
    assert handle.name == "Vehicle"
    assert context.is_tenant_bound
    assert manager.active_request_count("acme") == 1


@pytest.mark.asyncio
async def test_tenant_entity_without_tenant_fails(registry, manager, connector, shared_database):
    context = RequestDataContext(registry, manager, shared_database)

    with pytest.raises(TenantContextRequiredError) as exc_info:
        await context.resolve("Vehicle")

    assert exc_info.value.entity_name == "Vehicle"
    assert connector.calls == []


@pytest.mark.asyncio
async def test_unknown_entity(registry, manager, shared_database):
    context = RequestDataContext(registry, manager, shared_database, "acme")
    with pytest.raises(UnknownEntityError):
        await context.resolve("Ghost")


@pytest.mark.asyncio
async def test_shared_entity_without_shared_database(registry, manager):
    context = RequestDataContext(registry, manager, None)
    with pytest.raises(SharedDatabaseUnavailableError) as exc_info:
        await context.resolve("MasterAdmin")
    assert isinstance(exc_info.value, DataAccessError)


@pytest.mark.asyncio
async def test_repeated_tenant_resolution_acquires_once(registry, manager, connector, shared_database):
    context = RequestDataContext(registry, manager, shared_database, "acme")

    first = await context.resolve("Vehicle")
    second = await context.resolve("WorkshopQuote")
    third = await context.resolve("Vehicle")

    assert first.database is second.database is third.database
    assert connector.calls == ["acme"]
    assert manager.active_request_count("acme") == 1


@pytest.mark.asyncio
async def test_concurrent_first_resolutions_acquire_once(registry, manager, connector, shared_database):
    connector.gate = asyncio.Event()
    context = RequestDataContext(registry, manager, shared_database, "acme")

    tasks = [asyncio.create_task(context.resolve(name)) for name in ("Vehicle", "WorkshopQuote", "Vehicle")]
    await asyncio.sleep(0)
    connector.gate.set()
    handles = await asyncio.gather(*tasks)

    assert len({id(handle.database) for handle in handles}) == 1
    assert manager.active_request_count("acme") == 1
    assert manager.stats().total_requests == 1


@pytest.mark.asyncio
async def test_connection_failure_propagates_and_leaves_context_unbound(registry, manager, connector, shared_database):
    connector.fail_next("acme")
    context = RequestDataContext(registry, manager, shared_database, "acme")

    with pytest.raises(TenantConnectionError):
        await context.resolve("Vehicle")

    assert context.state is ContextState.CREATED
    context.release()
    assert manager.active_request_count("acme") == 0


# ============================================================================
# Release
# ============================================================================


@pytest.mark.asyncio
async def test_release_is_idempotent(registry, manager, shared_database):
    await manager.acquire("acme")  # another request holding the tenant
    context = RequestDataContext(registry, manager, shared_database, "acme")
    await context.resolve("Vehicle")
    assert manager.active_request_count("acme") == 2

    context.release()
    context.release()
    context.release()

    assert context.state is ContextState.RELEASED
    assert manager.active_request_count("acme") == 1


@pytest.mark.asyncio
async def test_release_without_tenant_resolution_is_noop(registry, manager, shared_database):
    await manager.acquire("acme")
    context = RequestDataContext(registry, manager, shared_database, "acme")
    await context.resolve("MasterAdmin")

    context.release()

    assert manager.active_request_count("acme") == 1


@pytest.mark.asyncio
async def test_resolve_after_release_fails(registry, manager, shared_database):
    context = RequestDataContext(registry, manager, shared_database, "acme")
    context.release()

    with pytest.raises(ContextAlreadyReleasedError):
        await context.resolve("Vehicle")
    with pytest.raises(ContextAlreadyReleasedError):
        await context.resolve("MasterAdmin")


@pytest.mark.asyncio
async def test_release_during_inflight_acquire(registry, manager, connector, shared_database):
    """The reference obtained after release is given back immediately."""
    connector.gate = asyncio.Event()
    context = RequestDataContext(registry, manager, shared_database, "acme")

    task = asyncio.create_task(context.resolve("Vehicle"))
    await asyncio.sleep(0)
    context.release()
    connector.gate.set()

    with pytest.raises(ContextAlreadyReleasedError):
        await task
    assert manager.active_request_count("acme") == 0
    assert manager.is_cached("acme")


@pytest.mark.asyncio
async def test_async_with_releases_on_error(registry, manager, shared_database):
    with pytest.raises(RuntimeError):
        async with RequestDataContext(registry, manager, shared_database, "acme") as context:
            await context.resolve("Vehicle")
            assert manager.active_request_count("acme") == 1
            raise RuntimeError("handler failed")

    assert context.released
    assert manager.active_request_count("acme") == 0


@pytest.mark.asyncio
async def test_scope_helper_releases(registry, manager, shared_database):
    async with RequestDataContext.scope(registry, manager, shared_database, "acme") as context:
        await context.resolve("Vehicle")

    assert context.released
    assert manager.active_request_count("acme") == 0


# ============================================================================
# End-to-end
# ============================================================================


@pytest.mark.asyncio
async def test_two_concurrent_requests_share_one_tenant_connection(registry, manager, connector, shared_database):
    connector.gate = asyncio.Event()
    first = RequestDataContext(registry, manager, shared_database, "acme")
    second = RequestDataContext(registry, manager, shared_database, "acme")

    tasks = [asyncio.create_task(first.resolve("Vehicle")), asyncio.create_task(second.resolve("Vehicle"))]
    await asyncio.sleep(0)
    connector.gate.set()
    await asyncio.gather(*tasks)

    assert connector.calls == ["acme"]
    assert manager.active_request_count("acme") == 2

    first.release()
    second.release()
    assert manager.active_request_count("acme") == 0


@pytest.mark.asyncio
async def test_failed_tenant_recovers_on_next_request(registry, manager, connector, shared_database):
    connector.fail_next("x")
    async with RequestDataContext(registry, manager, shared_database, "x") as failing:
        with pytest.raises(TenantConnectionError):
            await failing.resolve("Vehicle")
    assert not manager.is_cached("x")

    async with RequestDataContext(registry, manager, shared_database, "x") as recovered:
        handle = await recovered.resolve("Vehicle")
        assert handle.tenant_id == "x"
        assert manager.active_request_count("x") == 1

    assert manager.active_request_count("x") == 0
