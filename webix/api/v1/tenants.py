"""
租户连接运维 API（超级管理员）

查看注册表中缓存的租户连接，手动关闭某个租户的连接
"""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from webix.api.deps import SuperAdmin, Tenancy
from webix.core.logging import get_logger
from webix.tenancy.keys import normalize_tenant_key

logger = get_logger(__name__)

router = APIRouter()


class TenantConnectionInfo(BaseModel):
    tenant_key: str
    database: str
    serial: int
    opened_at: datetime
    models_bound: bool


class TenantConnectionList(BaseModel):
    total: int
    items: list[TenantConnectionInfo]


class CloseConnectionResponse(BaseModel):
    tenant_key: str
    closed: bool


@router.get("/connections", response_model=TenantConnectionList)
async def list_tenant_connections(tenancy: Tenancy, admin: SuperAdmin):
    """已缓存的租户连接"""
    items = [
        TenantConnectionInfo(
            **info,
            models_bound=tenancy.binder.get_cached(info["tenant_key"]) is not None,
        )
        for info in tenancy.registry.describe()
    ]
    return TenantConnectionList(total=len(items), items=items)


@router.delete("/{subdomain}/connection", response_model=CloseConnectionResponse)
async def close_tenant_connection(subdomain: str, tenancy: Tenancy, admin: SuperAdmin):
    """关闭租户连接，下一次请求会重新建立"""
    key = normalize_tenant_key(subdomain)
    closed = await tenancy.close_tenant(key)
    logger.info("tenant_connection_close_requested", tenant_key=key, closed=closed, admin_id=admin.id)
    return CloseConnectionResponse(tenant_key=key, closed=closed)
