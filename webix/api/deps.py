"""
API 依赖注入

- 多租户运行时、控制面会话
- 请求级租户上下文（解析 -> 组织校验 -> 建连 -> 绑定）
- 控制面主体（平台管理员 / 组织用户）与租户用户认证
- 租户角色、权限检查
"""

from typing import Annotated, AsyncGenerator, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from webix.core.logging import get_logger
from webix.core.security import TokenKind, decode_token, oauth2_scheme
from webix.database.models import Admin, User, UserStatus
from webix.services.organization_service import OrganizationService
from webix.tenancy.context import TenantContext, build_tenant_context
from webix.tenancy.errors import NoConnectionError, TenantNotRegistered
from webix.tenancy.manager import TenancyManager
from webix.tenancy.resolver import inbound_request_from_starlette

logger = get_logger(__name__)

Principal = Union[Admin, User]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ============================================================
# 运行时与控制面会话
# ============================================================


def get_tenancy(request: Request) -> TenancyManager:
    """获取进程级多租户运行时（lifespan 中挂到 app.state）"""
    tenancy = getattr(request.app.state, "tenancy", None)
    if tenancy is None:
        raise NoConnectionError("Tenancy runtime is not initialized")
    return tenancy


async def get_db(
    tenancy: Annotated[TenancyManager, Depends(get_tenancy)],
) -> AsyncGenerator[AsyncSession, None]:
    """获取控制面数据库会话"""
    async with tenancy.control_plane.session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ============================================================
# 租户上下文
# ============================================================


async def get_tenant_context(
    request: Request,
    tenancy: Annotated[TenancyManager, Depends(get_tenancy)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TenantContext:
    """
    构建请求级租户上下文

    TENANT_REQUIRE_ORGANIZATION 开启时，只有 active / pending 的组织可以被路由
    """

    async def organization_check(tenant_key: str) -> Optional[str]:
        organization = await OrganizationService(db).find_by_subdomain(tenant_key)
        if organization is None:
            raise TenantNotRegistered(
                f"Organization not found: {tenant_key}",
                tenant_key=tenant_key,
            )
        return organization.id

    inbound = await inbound_request_from_starlette(request)
    context = await build_tenant_context(
        tenancy,
        inbound,
        organization_check if tenancy.settings.TENANT_REQUIRE_ORGANIZATION else None,
    )
    request.state.tenant_context = context
    return context


async def get_authenticated_tenant_context(
    request: Request,
    context: Annotated[TenantContext, Depends(get_tenant_context)],
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
) -> TenantContext:
    """
    租户用户认证

    令牌必须是 tenant_user 类型，且 subdomain 声明与当前租户一致
    """
    if not token:
        raise _unauthorized("Access denied. No token provided.")

    payload = decode_token(token)
    if not payload or payload.get("kind") != TokenKind.TENANT_USER:
        raise _unauthorized("Invalid token")

    if payload.get("subdomain") != context.tenant_key:
        raise _unauthorized("Invalid token for this organization")

    user = await context.users.get_by_id(payload.get("sub") or "")
    if user is None:
        raise _unauthorized("Token is valid but user no longer exists")

    if user.is_locked:
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail="Account is temporarily locked due to too many failed login attempts",
        )

    if not user.is_active:
        raise _unauthorized("Account is not active")

    context = context.with_principal(user)
    request.state.tenant_context = context
    return context


def _dispatch(request: Request, context: TenantContext) -> TenantContext:
    """交给路由处理函数前的最后一步"""
    context = context.dispatched()
    request.state.tenant_context = context
    return context


async def dispatch_tenant_context(
    request: Request,
    context: Annotated[TenantContext, Depends(get_tenant_context)],
) -> TenantContext:
    return _dispatch(request, context)


async def dispatch_authenticated_tenant_context(
    request: Request,
    context: Annotated[TenantContext, Depends(get_authenticated_tenant_context)],
) -> TenantContext:
    return _dispatch(request, context)


def require_tenant_roles(*roles: str):
    """
    租户角色检查依赖工厂

    用法：
        @router.get("/xxx")
        async def xxx(ctx: Annotated[TenantContext, Depends(require_tenant_roles("owner", "admin"))]):
            ...

        @router.post("/xxx", dependencies=[Depends(require_tenant_roles("owner"))])
    """

    async def role_checker(
        request: Request,
        context: Annotated[TenantContext, Depends(get_authenticated_tenant_context)],
    ) -> TenantContext:
        if context.principal.role not in roles:
            logger.info(
                "tenant_role_denied",
                user_id=context.principal.id,
                role=context.principal.role,
                required=list(roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {' or '.join(roles)}",
            )
        return _dispatch(request, context)

    return role_checker


def require_tenant_permission(permission: str):
    """租户权限检查依赖工厂"""

    async def permission_checker(
        request: Request,
        context: Annotated[TenantContext, Depends(get_authenticated_tenant_context)],
    ) -> TenantContext:
        if not context.principal.has_permission(permission):
            logger.info(
                "tenant_permission_denied",
                user_id=context.principal.id,
                required=permission,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required permission: {permission}",
            )
        return _dispatch(request, context)

    return permission_checker


# ============================================================
# 控制面主体
# ============================================================


async def get_current_principal(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Principal:
    """
    获取当前控制面主体

    kind=admin 为平台管理员，kind=user 为组织用户；租户用户令牌在此无效
    """
    if not token:
        raise _unauthorized("Access denied. No token provided.")

    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        raise _unauthorized("Invalid token")

    kind = payload.get("kind")
    if kind == TokenKind.ADMIN:
        admin = await db.get(Admin, payload["sub"])
        if admin is None or not admin.is_active:
            raise _unauthorized("Token is valid but admin no longer exists")
        return admin

    if kind == TokenKind.USER:
        user = await db.get(User, payload["sub"])
        if user is None:
            raise _unauthorized("Token is valid but user no longer exists")
        if user.status != UserStatus.ACTIVE:
            raise _unauthorized("Account is not active")
        return user

    raise _unauthorized("Invalid token")


async def get_current_super_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Admin:
    """仅平台超级管理员"""
    if not isinstance(principal, Admin) or not principal.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Super admin privileges required.",
        )
    return principal


# 类型别名
Tenancy = Annotated[TenancyManager, Depends(get_tenancy)]
DB = Annotated[AsyncSession, Depends(get_db)]
TenantCtx = Annotated[TenantContext, Depends(dispatch_tenant_context)]
AuthTenantCtx = Annotated[TenantContext, Depends(dispatch_authenticated_tenant_context)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
SuperAdmin = Annotated[Admin, Depends(get_current_super_admin)]
