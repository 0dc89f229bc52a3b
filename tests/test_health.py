"""
健康检查与指标端点测试
"""

import pytest
from httpx import AsyncClient

from webix.main import create_app
from webix.middleware.metrics import normalize_path


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """测试健康检查端点"""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "webix-udirdlaga"


@pytest.mark.asyncio
async def test_api_health_reports_database_and_tenants(client: AsyncClient, tenancy):
    await tenancy.open_tenant("acme")

    response = await client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"]["healthy"] is True
    assert data["tenant_connections"] == 1


@pytest.mark.asyncio
async def test_ready_and_live(client: AsyncClient):
    assert (await client.get("/api/health/ready")).json() == {"ready": True}
    assert (await client.get("/api/health/live")).json() == {"alive": True}


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient, tenancy):
    await tenancy.open_tenant("acme")
    await client.get("/api/health/live")
    await client.get("/api/tenant/a_b/auth/me")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "tenant_connections_open" in response.text
    assert "http_requests_total" in response.text
    assert 'tenant_request_errors_total{code="invalid_tenant_key"}' in response.text


@pytest.mark.asyncio
async def test_tenant_connections_listing(client: AsyncClient, tenancy, admin_headers):
    await tenancy.open_tenant("acme")

    response = await client.get("/api/tenants/connections", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["database"] == "webix_acme"
    assert data["items"][0]["models_bound"] is True


@pytest.mark.asyncio
async def test_tenant_connections_require_super_admin(client: AsyncClient):
    response = await client.get("/api/tenants/connections")

    assert response.status_code == 401


def test_normalize_path():
    assert normalize_path("/api/tenant/acme/rentals") == "/api/tenant/{subdomain}/rentals"
    assert (
        normalize_path("/api/organizations/3f2b8c1e-5d4a-4b6c-9e7f-0a1b2c3d4e5f")
        == "/api/organizations/{id}"
    )
    assert normalize_path("/api/health") == "/api/health"


@pytest.mark.asyncio
async def test_lifespan_starts_and_stops_tenancy(test_settings):
    app = create_app(test_settings)

    async with app.router.lifespan_context(app):
        tenancy = app.state.tenancy
        assert tenancy.started
        await tenancy.open_tenant("acme")
        assert len(tenancy.registry) == 1

    assert app.state.tenancy is None
    assert not tenancy.started
    assert len(tenancy.registry) == 0
