"""
多租户路由与模型绑定

TenantKey 解析 -> 租户库连接 -> 模型绑定 -> 请求级上下文
"""

from webix.tenancy.binder import TenantModelBinder, TenantModelSet, build_model_set
from webix.tenancy.context import TenantContext, TenantRequestState, build_tenant_context
from webix.tenancy.errors import (
    InvalidTenantKeyFormat,
    NoConnectionError,
    TenancyError,
    TenantConnectionError,
    TenantKeyConflict,
    TenantKeyMissing,
    TenantNotRegistered,
)
from webix.tenancy.keys import is_valid_tenant_key, normalize_tenant_key, tenant_database_name
from webix.tenancy.manager import TenancyManager
from webix.tenancy.registry import ConnectionRegistry, DatabaseConnection
from webix.tenancy.resolver import (
    InboundRequest,
    TenantKeySource,
    inbound_request_from_starlette,
    resolve_tenant_key,
)
from webix.tenancy.stores import (
    DuplicateUserError,
    InvalidRentalStateError,
    RentalNotFoundError,
    RentalStore,
    SqlRentalStore,
    SqlUserStore,
    StoreError,
    UserStore,
)

__all__ = [
    "TenancyManager",
    "ConnectionRegistry",
    "DatabaseConnection",
    "TenantModelBinder",
    "TenantModelSet",
    "build_model_set",
    "TenantContext",
    "TenantRequestState",
    "build_tenant_context",
    "InboundRequest",
    "TenantKeySource",
    "inbound_request_from_starlette",
    "resolve_tenant_key",
    "normalize_tenant_key",
    "is_valid_tenant_key",
    "tenant_database_name",
    "UserStore",
    "RentalStore",
    "SqlUserStore",
    "SqlRentalStore",
    "StoreError",
    "DuplicateUserError",
    "RentalNotFoundError",
    "InvalidRentalStateError",
    "TenancyError",
    "InvalidTenantKeyFormat",
    "TenantKeyMissing",
    "TenantKeyConflict",
    "TenantNotRegistered",
    "TenantConnectionError",
    "NoConnectionError",
]
