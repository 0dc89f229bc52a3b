"""
租户 API 端到端测试

/api/tenant/{subdomain}/... 请求经过解析 -> 组织校验 -> 建连 -> 绑定 -> 认证
"""

import pytest
from httpx import AsyncClient

from conftest import USER_PASSWORD, make_organization, make_tenant_user, tenant_auth
from webix.core.security import TokenKind, create_access_token
from webix.database.models import OrganizationStatus
from webix.database.tenant_models import TenantUserPermission, TenantUserRole


# ============================================================
# 租户解析与登录
# ============================================================


@pytest.mark.asyncio
async def test_tenant_login(client: AsyncClient, manager_user):
    response = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["subdomain"] == "acme"
    assert data["user"]["id"] == manager_user.id
    assert "hashed_password" not in data["user"]


@pytest.mark.asyncio
async def test_tenant_key_in_path_is_case_insensitive(client: AsyncClient, manager_user):
    response = await client.post(
        "/api/tenant/ACME/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 200
    assert response.json()["subdomain"] == "acme"


@pytest.mark.asyncio
async def test_tenant_login_unknown_user(client: AsyncClient, acme):
    response = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "ghost", "password": USER_PASSWORD},
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_tenant_login_wrong_password(client: AsyncClient, reader_user):
    response = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "bob", "password": "wrong-password"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unregistered_tenant(client: AsyncClient, tenancy, organization):
    response = await client.post(
        "/api/tenant/nobody/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "tenant_not_registered"
    # 未注册的组织不会建立连接
    assert tenancy.registry.get_tenant_connection("nobody") is None


@pytest.mark.asyncio
async def test_invalid_tenant_key(client: AsyncClient, organization):
    response = await client.post(
        "/api/tenant/a_b/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_tenant_key"


@pytest.mark.asyncio
async def test_conflicting_tenant_keys(client: AsyncClient, organization, db_session):
    await make_organization(db_session, "globex")

    response = await client.post(
        "/api/tenant/acme/auth/login",
        params={"subdomain": "globex"},
        json={"username": "alice", "password": USER_PASSWORD},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "tenant_key_conflict"

    response = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "alice", "password": USER_PASSWORD, "subdomain": "globex"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "tenant_key_conflict"


@pytest.mark.asyncio
async def test_matching_sources_are_not_a_conflict(client: AsyncClient, manager_user):
    response = await client.post(
        "/api/tenant/acme/auth/login",
        headers={"X-Tenant-Subdomain": "ACME"},
        json={"username": "alice", "password": USER_PASSWORD, "subdomain": "acme"},
    )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_suspended_organization_is_not_routable(client: AsyncClient, db_session):
    await make_organization(db_session, "initech", status=OrganizationStatus.SUSPENDED)

    response = await client.post(
        "/api/tenant/initech/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_pending_organization_is_routable(client: AsyncClient, db_session, tenancy):
    await make_organization(db_session, "hooli", status=OrganizationStatus.PENDING)
    models = await tenancy.open_tenant("hooli")
    await make_tenant_user(models, "gavin")

    response = await client.post(
        "/api/tenant/hooli/auth/login",
        json={"username": "gavin", "password": USER_PASSWORD},
    )

    assert response.status_code == 200


# ============================================================
# 租户用户认证
# ============================================================


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient, acme):
    response = await client.get("/api/tenant/acme/auth/me")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_with_tenant_token(client: AsyncClient, reader_user):
    response = await client.get("/api/tenant/acme/auth/me", headers=tenant_auth(reader_user, "acme"))

    assert response.status_code == 200
    assert response.json()["username"] == "bob"


@pytest.mark.asyncio
async def test_token_for_other_tenant_is_rejected(client: AsyncClient, reader_user, db_session):
    await make_organization(db_session, "globex")

    response = await client.get(
        "/api/tenant/acme/auth/me", headers=tenant_auth(reader_user, "globex")
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_control_plane_token_is_rejected(client: AsyncClient, reader_user):
    token = create_access_token(subject=reader_user.id, kind=TokenKind.USER)

    response = await client.get(
        "/api/tenant/acme/auth/me", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_then_use_token(client: AsyncClient, reader_user):
    login = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "bob", "password": USER_PASSWORD},
    )
    token = login.json()["access_token"]

    response = await client.get(
        "/api/tenant/acme/auth/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200
    assert response.json()["last_login_at"] is not None

    response = await client.post(
        "/api/tenant/acme/auth/logout", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200


# ============================================================
# 租户用户管理
# ============================================================


@pytest.mark.asyncio
async def test_manage_users_permission_required(client: AsyncClient, reader_user):
    response = await client.get("/api/tenant/acme/users", headers=tenant_auth(reader_user, "acme"))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_and_list_users(client: AsyncClient, manager_user):
    headers = tenant_auth(manager_user, "acme")

    response = await client.post(
        "/api/tenant/acme/users",
        headers=headers,
        json={"username": "Carol", "email": "carol@acme.mn", "password": USER_PASSWORD},
    )
    assert response.status_code == 201
    assert response.json()["username"] == "carol"
    assert response.json()["permissions"] == ["read"]

    response = await client.post(
        "/api/tenant/acme/users",
        headers=headers,
        json={"username": "carol", "email": "carol2@acme.mn", "password": USER_PASSWORD},
    )
    assert response.status_code == 409

    response = await client.get("/api/tenant/acme/users", headers=headers)
    assert response.status_code == 200
    assert response.json()["total"] == 2


@pytest.mark.asyncio
async def test_create_user_requires_admin_role(client: AsyncClient, acme):
    # 有 manage_users 权限但角色只是 user
    clerk = await make_tenant_user(
        acme,
        "clerk",
        role=TenantUserRole.USER,
        permissions=(TenantUserPermission.READ, TenantUserPermission.MANAGE_USERS),
    )
    headers = tenant_auth(clerk, "acme")

    response = await client.get("/api/tenant/acme/users", headers=headers)
    assert response.status_code == 200

    response = await client.post(
        "/api/tenant/acme/users",
        headers=headers,
        json={"username": "mallory", "email": "mallory@acme.mn", "password": USER_PASSWORD},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied. Required role: owner or admin"
    assert await acme.users.get_by_username("mallory") is None


@pytest.mark.asyncio
async def test_owner_can_create_user(client: AsyncClient, acme):
    owner = await make_tenant_user(
        acme,
        "olga",
        role=TenantUserRole.OWNER,
        permissions=(TenantUserPermission.MANAGE_USERS,),
    )

    response = await client.post(
        "/api/tenant/acme/users",
        headers=tenant_auth(owner, "acme"),
        json={"username": "frank", "email": "frank@acme.mn", "password": USER_PASSWORD},
    )

    assert response.status_code == 201
    assert response.json()["role"] == TenantUserRole.USER


@pytest.mark.asyncio
async def test_create_user_validates_role(client: AsyncClient, manager_user):
    response = await client.post(
        "/api/tenant/acme/users",
        headers=tenant_auth(manager_user, "acme"),
        json={
            "username": "dave",
            "email": "dave@acme.mn",
            "password": USER_PASSWORD,
            "role": "emperor",
        },
    )

    assert response.status_code == 422


# ============================================================
# 租借
# ============================================================


@pytest.mark.asyncio
async def test_rental_lifecycle(client: AsyncClient, reader_user):
    headers = tenant_auth(reader_user, "acme")

    response = await client.post(
        "/api/tenant/acme/rentals",
        headers=headers,
        json={"item_id": "webtoon-7", "rental_period": 5, "chapters": [1], "total_cost": "2.50"},
    )
    assert response.status_code == 201
    rental = response.json()
    assert rental["status"] == "active"
    assert rental["user_id"] == reader_user.id
    assert rental["days_remaining"] == 5
    assert not rental["is_overdue"]

    response = await client.get(f"/api/tenant/acme/rentals/{rental['id']}", headers=headers)
    assert response.status_code == 200

    response = await client.get("/api/tenant/acme/rentals", headers=headers)
    assert response.json()["total"] == 1

    response = await client.post(f"/api/tenant/acme/rentals/{rental['id']}/return", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "returned"

    response = await client.post(f"/api/tenant/acme/rentals/{rental['id']}/cancel", headers=headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_rental_period_limited_by_organization_settings(client: AsyncClient, reader_user):
    response = await client.post(
        "/api/tenant/acme/rentals",
        headers=tenant_auth(reader_user, "acme"),
        json={"item_id": "webtoon-7", "rental_period": 31},
    )

    assert response.status_code == 400
    assert "30 days" in response.json()["detail"]


@pytest.mark.asyncio
async def test_rentals_are_private_to_their_owner(client: AsyncClient, acme, reader_user, manager_user):
    rental = await acme.rentals.create_rental(user_id=manager_user.id, item_id="webtoon-9")

    response = await client.get(
        f"/api/tenant/acme/rentals/{rental.id}", headers=tenant_auth(reader_user, "acme")
    )
    assert response.status_code == 404

    response = await client.get(
        f"/api/tenant/acme/rentals/{rental.id}", headers=tenant_auth(manager_user, "acme")
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/tenant/acme/rentals",
        headers=tenant_auth(reader_user, "acme"),
        json={"item_id": "webtoon-9", "user_id": manager_user.id},
    )
    assert response.status_code == 403


# ============================================================
# 连接生命周期
# ============================================================


@pytest.mark.asyncio
async def test_first_request_opens_tenant_connection(client: AsyncClient, tenancy, organization):
    assert tenancy.registry.get_tenant_connection("acme") is None

    response = await client.post(
        "/api/tenant/acme/auth/login",
        json={"username": "alice", "password": USER_PASSWORD},
    )

    assert response.status_code == 401
    assert tenancy.registry.get_tenant_connection("acme") is not None


@pytest.mark.asyncio
async def test_requests_after_close_use_new_connection(
    client: AsyncClient, tenancy, reader_user, admin_headers
):
    headers = tenant_auth(reader_user, "acme")
    first = tenancy.registry.get_tenant_connection("acme")

    response = await client.delete("/api/tenants/acme/connection", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["closed"] is True
    assert tenancy.registry.get_tenant_connection("acme") is None

    response = await client.get("/api/tenant/acme/auth/me", headers=headers)
    assert response.status_code == 200

    second = tenancy.registry.get_tenant_connection("acme")
    assert second is not None
    assert second.serial > first.serial
    assert tenancy.binder.get_cached("acme").connection is second
