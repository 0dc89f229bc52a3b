"""
数据库模块

提供 SQLAlchemy 2.0 异步数据库支持：控制面与各租户库
"""

from webix.database.base import (
    Base,
    TenantBase,
    TimestampMixin,
    SoftDeleteMixin,
    StringUUIDPrimaryKeyMixin,
)
from webix.database.engine import (
    DatabaseOpener,
    build_engine,
    build_tenant_database_url,
    mask_url,
    open_database,
)
from webix.database.health import (
    DBHealthStatus,
    check_db_health,
)

__all__ = [
    # Base
    "Base",
    "TenantBase",
    "TimestampMixin",
    "SoftDeleteMixin",
    "StringUUIDPrimaryKeyMixin",
    # Engine
    "DatabaseOpener",
    "build_engine",
    "build_tenant_database_url",
    "mask_url",
    "open_database",
    # Health
    "DBHealthStatus",
    "check_db_health",
]
