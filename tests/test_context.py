"""
请求级租户上下文测试
"""

from pathlib import Path

import pytest
from starlette.requests import Request

from conftest import make_tenant_user
from webix.api.deps import dispatch_tenant_context
from webix.database.engine import open_database
from webix.tenancy.context import TenantRequestState, build_tenant_context
from webix.tenancy.errors import (
    InvalidTenantKeyFormat,
    TenantConnectionError,
    TenantKeyConflict,
    TenantKeyMissing,
    TenantNotRegistered,
)
from webix.tenancy.manager import TenancyManager
from webix.tenancy.resolver import InboundRequest


@pytest.mark.asyncio
async def test_builds_context_from_path(tenancy: TenancyManager):
    context = await build_tenant_context(
        tenancy, InboundRequest(path="/api/tenant/Acme/users")
    )

    assert context.tenant_key == "acme"
    assert context.state == TenantRequestState.MODELS_BOUND
    assert context.models is tenancy.binder.get_models("acme")
    assert context.users is context.models.users
    assert not context.is_authenticated


@pytest.mark.asyncio
async def test_same_tenant_shares_models_across_requests(tenancy: TenancyManager):
    first = await build_tenant_context(tenancy, InboundRequest(path="/api/tenant/acme/a"))
    second = await build_tenant_context(
        tenancy, InboundRequest(path="/api/other", headers={"x-tenant-subdomain": "ACME"})
    )

    assert first is not second
    assert first.models is second.models


@pytest.mark.asyncio
async def test_missing_key(tenancy: TenancyManager):
    with pytest.raises(TenantKeyMissing):
        await build_tenant_context(tenancy, InboundRequest(path="/api/other"))

    assert len(tenancy.registry) == 0


@pytest.mark.asyncio
async def test_invalid_key_does_not_open_connection(tenancy: TenancyManager):
    with pytest.raises(InvalidTenantKeyFormat):
        await build_tenant_context(tenancy, InboundRequest(path="/api/tenant/a_b/users"))

    assert len(tenancy.registry) == 0


@pytest.mark.asyncio
async def test_conflict(tenancy: TenancyManager):
    request = InboundRequest(path="/api/tenant/acme/users", query={"subdomain": "globex"})

    with pytest.raises(TenantKeyConflict):
        await build_tenant_context(tenancy, request)


@pytest.mark.asyncio
async def test_organization_check_runs_before_connecting(tenancy: TenancyManager):
    async def organization_check(key):
        raise TenantNotRegistered(f"Organization not found: {key}", tenant_key=key)

    with pytest.raises(TenantNotRegistered):
        await build_tenant_context(
            tenancy, InboundRequest(path="/api/tenant/ghost/users"), organization_check
        )

    assert tenancy.registry.get_tenant_connection("ghost") is None


@pytest.mark.asyncio
async def test_organization_id_is_recorded(tenancy: TenancyManager):
    seen: list[str] = []

    async def organization_check(key):
        seen.append(key)
        return "org-1"

    context = await build_tenant_context(
        tenancy, InboundRequest(path="/api/tenant/ACME/users"), organization_check
    )

    assert seen == ["acme"]
    assert context.organization_id == "org-1"


@pytest.mark.asyncio
async def test_connection_failure_is_reported(test_settings):
    async def failing_opener(url, settings, create_missing):
        if Path(url.database).name.startswith("webix_"):
            raise OSError("database server unreachable")
        return await open_database(url, settings, create_missing)

    manager = TenancyManager(test_settings, opener=failing_opener)
    await manager.start()
    try:
        with pytest.raises(TenantConnectionError):
            await build_tenant_context(manager, InboundRequest(path="/api/tenant/acme/x"))
        assert len(manager.registry) == 0
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_state_progresses_to_dispatched(tenancy: TenancyManager):
    context = await build_tenant_context(tenancy, InboundRequest(path="/api/tenant/acme/me"))
    user = await make_tenant_user(context.models, "erin")

    authenticated = context.with_principal(user)
    dispatched = authenticated.dispatched()

    assert authenticated.state == TenantRequestState.AUTHENTICATED
    assert dispatched.state == TenantRequestState.DISPATCHED
    assert dispatched.principal is user
    assert dispatched.models is context.models
    assert dispatched.dispatched() is dispatched


@pytest.mark.asyncio
async def test_dispatch_dependency_records_context_on_request(tenancy: TenancyManager):
    context = await build_tenant_context(tenancy, InboundRequest(path="/api/tenant/acme/a"))
    request = Request({"type": "http", "headers": []})

    handed_over = await dispatch_tenant_context(request, context)

    assert handed_over.state == TenantRequestState.DISPATCHED
    assert not handed_over.is_authenticated
    assert request.state.tenant_context is handed_over
