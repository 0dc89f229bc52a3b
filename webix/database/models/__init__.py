"""
控制面模型

所有控制面 SQLAlchemy 模型的统一导出
"""

from webix.database.models.organization import (
    Organization,
    OrganizationAdmin,
    OrganizationAdminRole,
    OrganizationStatus,
)
from webix.database.models.user import User, UserPermission, UserRole, UserStatus
from webix.database.models.admin import Admin, AdminRole

__all__ = [
    "Organization",
    "OrganizationAdmin",
    "OrganizationAdminRole",
    "OrganizationStatus",
    "User",
    "UserPermission",
    "UserRole",
    "UserStatus",
    "Admin",
    "AdminRole",
]


async def create_control_plane_schema(engine) -> None:
    """在控制面库中建表（开发/测试使用，生产走 Alembic）"""
    from webix.database.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
