"""
租户库模型

注册到 TenantBase.metadata，租户库首次打开时按此建表
"""

from webix.database.tenant_models.user import (
    TenantUser,
    TenantUserPermission,
    TenantUserRole,
    TenantUserStatus,
)
from webix.database.tenant_models.rental import (
    DEFAULT_RENTAL_PERIOD_DAYS,
    PaymentStatus,
    RentalStatus,
    TenantRental,
)

__all__ = [
    "TenantUser",
    "TenantUserPermission",
    "TenantUserRole",
    "TenantUserStatus",
    "TenantRental",
    "RentalStatus",
    "PaymentStatus",
    "DEFAULT_RENTAL_PERIOD_DAYS",
]


async def create_tenant_schema(engine) -> None:
    """在租户库中建表（已存在的表跳过）"""
    from webix.database.base import TenantBase

    async with engine.begin() as conn:
        await conn.run_sync(TenantBase.metadata.create_all)
