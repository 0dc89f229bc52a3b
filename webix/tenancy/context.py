"""
请求级租户上下文

一个请求内：Unresolved -> KeyResolved -> ConnectionEnsured -> ModelsBound
-> [Authenticated] -> Dispatched。任何阶段失败即终止，处理函数拿不到半成品上下文。
上下文只挂在当前请求上，从不缓存或跨请求共享。
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from webix.core.logging import bind_request_context, get_logger
from webix.tenancy.binder import TenantModelSet
from webix.tenancy.errors import TenancyError, TenantKeyMissing
from webix.tenancy.keys import normalize_tenant_key
from webix.tenancy.resolver import InboundRequest, resolve_tenant_key
from webix.tenancy.stores import RentalStore, UserStore

if TYPE_CHECKING:
    from webix.database.tenant_models import TenantUser
    from webix.tenancy.manager import TenancyManager

logger = get_logger(__name__)

# 组织校验：传入 TenantKey，返回组织 ID；不存在时抛出 TenantNotRegistered
OrganizationCheck = Callable[[str], Awaitable[Optional[str]]]


class TenantRequestState(str, Enum):
    """请求处理阶段"""
    UNRESOLVED = "unresolved"
    KEY_RESOLVED = "key_resolved"
    CONNECTION_ENSURED = "connection_ensured"
    MODELS_BOUND = "models_bound"
    AUTHENTICATED = "authenticated"
    DISPATCHED = "dispatched"


@dataclass(frozen=True)
class TenantContext:
    """
    租户上下文

    下游鉴权只读 tenant_key 与 models，不修改
    """

    tenant_key: str
    models: TenantModelSet
    organization_id: Optional[str] = None
    principal: Optional["TenantUser"] = None
    state: TenantRequestState = TenantRequestState.MODELS_BOUND

    @property
    def users(self) -> UserStore:
        return self.models.users

    @property
    def rentals(self) -> RentalStore:
        return self.models.rentals

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    def with_principal(self, principal: "TenantUser") -> "TenantContext":
        return replace(self, principal=principal, state=TenantRequestState.AUTHENTICATED)

    def dispatched(self) -> "TenantContext":
        """标记为已交给处理函数；principal 保持不变"""
        if self.state == TenantRequestState.DISPATCHED:
            return self
        return replace(self, state=TenantRequestState.DISPATCHED)


async def build_tenant_context(
    manager: "TenancyManager",
    request: InboundRequest,
    organization_check: Optional[OrganizationCheck] = None,
) -> TenantContext:
    """
    执行解析 -> 建连 -> 绑定

    Raises:
        TenantKeyMissing / InvalidTenantKeyFormat / TenantKeyConflict: 客户端输入问题
        TenantNotRegistered: 组织不存在或不可用
        TenantConnectionError: 租户库打开失败
    """
    state = TenantRequestState.UNRESOLVED
    key: Optional[str] = None
    try:
        raw = resolve_tenant_key(request, manager.settings)
        if raw is None:
            raise TenantKeyMissing("Organization subdomain is required")
        key = normalize_tenant_key(raw)
        state = TenantRequestState.KEY_RESOLVED

        organization_id = None
        if organization_check is not None:
            organization_id = await organization_check(key)

        await manager.registry.ensure_tenant_connection(key)
        state = TenantRequestState.CONNECTION_ENSURED

        models = manager.binder.get_models(key)
    except TenancyError as e:
        logger.info(
            "tenant_context_failed",
            stage=state.value,
            tenant_key=key or e.tenant_key,
            code=e.code,
        )
        raise

    bind_request_context(tenant_key=key)
    return TenantContext(
        tenant_key=key,
        models=models,
        organization_id=organization_id,
    )
