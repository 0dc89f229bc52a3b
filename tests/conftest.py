"""
测试配置和 fixtures

控制面与租户库都使用 tmp_path 下的 SQLite 文件：
control.db 为控制面，webix_<subdomain>.db 为各租户库
"""

import os

# 必须在导入 webix 之前设置
os.environ.setdefault("ENV", "test")
os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from webix.core.config import Settings
from webix.core.logging import remove_logging_handler
from webix.core.security import TokenKind, create_access_token, get_password_hash
from webix.database.models import Admin, Organization, OrganizationStatus
from webix.database.tenant_models import TenantUser, TenantUserPermission, TenantUserRole
from webix.main import create_app
from webix.tenancy.binder import TenantModelSet
from webix.tenancy.manager import TenancyManager

ADMIN_PASSWORD = "admin-secret"
USER_PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def reset_logging():
    """每个测试结束后还原 setup_logging 安装的全局日志配置"""
    yield
    remove_logging_handler()
    structlog.reset_defaults()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """每个测试独立的配置（独立的 SQLite 目录）"""
    return Settings(
        ENV="test",
        DEBUG=False,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'control.db'}",
        CONTROL_PLANE_AUTO_CREATE_TABLES=True,
    )


@pytest_asyncio.fixture
async def tenancy(test_settings: Settings) -> AsyncGenerator[TenancyManager, None]:
    """已启动的多租户运行时"""
    manager = TenancyManager(test_settings)
    await manager.start()
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def db_session(tenancy: TenancyManager) -> AsyncGenerator[AsyncSession, None]:
    """控制面会话"""
    async with tenancy.control_plane.session() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, tenancy: TenancyManager
) -> AsyncGenerator[AsyncClient, None]:
    """创建测试客户端（不走 lifespan，直接挂上运行时）"""
    app = create_app(test_settings)
    app.state.tenancy = tenancy

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ============================================================
# 数据准备
# ============================================================


async def make_organization(
    session: AsyncSession,
    subdomain: str,
    status: str = OrganizationStatus.ACTIVE,
) -> Organization:
    organization = Organization(
        name=subdomain.title(),
        display_name=f"{subdomain.title()} Comics",
        registration_number=f"REG-{subdomain.upper()}",
        subdomain=subdomain,
        status=status,
        is_verified=status == OrganizationStatus.ACTIVE,
    )
    session.add(organization)
    await session.commit()
    return organization


async def make_tenant_user(
    models: TenantModelSet,
    username: str,
    role: str = TenantUserRole.USER,
    permissions: tuple[str, ...] = (TenantUserPermission.READ,),
) -> TenantUser:
    return await models.users.create_user(
        username=username,
        email=f"{username}@{models.tenant_key}.mn",
        password=USER_PASSWORD,
        first_name=username.title(),
        role=role,
        permissions=permissions,
    )


def tenant_auth(user: TenantUser, subdomain: str) -> dict[str, str]:
    token = create_access_token(
        subject=user.id, kind=TokenKind.TENANT_USER, subdomain=subdomain
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    """已激活的组织 acme"""
    return await make_organization(db_session, "acme")


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> Admin:
    admin = Admin(
        username="root",
        email="root@webix.com",
        hashed_password=get_password_hash(ADMIN_PASSWORD),
    )
    db_session.add(admin)
    await db_session.commit()
    return admin


@pytest.fixture
def admin_headers(super_admin: Admin) -> dict[str, str]:
    token = create_access_token(subject=super_admin.id, kind=TokenKind.ADMIN)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def acme(tenancy: TenancyManager, organization: Organization) -> TenantModelSet:
    """acme 的租户模型集（已建连）"""
    return await tenancy.open_tenant(organization.subdomain)


@pytest_asyncio.fixture
async def manager_user(acme: TenantModelSet) -> TenantUser:
    """拥有全部权限的租户管理员"""
    return await make_tenant_user(
        acme, "alice", role=TenantUserRole.ADMIN, permissions=TenantUserPermission.ALL
    )


@pytest_asyncio.fixture
async def reader_user(acme: TenantModelSet) -> TenantUser:
    """只有 read 权限的普通租户用户"""
    return await make_tenant_user(acme, "bob")
