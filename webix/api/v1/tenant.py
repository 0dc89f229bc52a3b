"""
租户 API（/api/tenant/{subdomain}/...）

所有路由先经过 get_tenant_context：解析子域名 -> 组织校验 -> 建连 -> 绑定模型。
处理函数只通过 TenantContext 中的 UserStore / RentalStore 访问租户库。
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field, field_validator

from webix.api.deps import (
    DB,
    AuthTenantCtx,
    TenantCtx,
    require_tenant_permission,
    require_tenant_roles,
)
from webix.core.config import settings
from webix.core.logging import get_logger
from webix.core.security import TokenKind, create_access_token
from webix.database.models import Organization
from webix.database.models.organization import default_organization_settings
from webix.database.tenant_models import (
    DEFAULT_RENTAL_PERIOD_DAYS,
    TenantRental,
    TenantUser,
    TenantUserPermission,
    TenantUserRole,
    TenantUserStatus,
)
from webix.database.tenant_models.rental import PAYMENT_METHODS
from webix.services.auth_service import AuthError, authenticate_tenant_user
from webix.tenancy.context import TenantContext
from webix.tenancy.stores import (
    DuplicateUserError,
    InvalidRentalStateError,
    RentalNotFoundError,
)

logger = get_logger(__name__)

router = APIRouter()


# ============================================================
# Schemas
# ============================================================

class TenantLoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TenantUserResponse(BaseModel):
    id: str
    username: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: str
    permissions: list[str]
    status: str
    last_login_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class TenantLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    subdomain: str
    user: TenantUserResponse


class TenantUserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    role: str = TenantUserRole.USER
    permissions: list[str] = [TenantUserPermission.READ]
    status: str = TenantUserStatus.ACTIVE

    @field_validator("role")
    @classmethod
    def check_role(cls, v: str) -> str:
        if v not in TenantUserRole.ALL:
            raise ValueError(f"role must be one of {', '.join(TenantUserRole.ALL)}")
        return v

    @field_validator("permissions")
    @classmethod
    def check_permissions(cls, v: list[str]) -> list[str]:
        unknown = set(v) - set(TenantUserPermission.ALL)
        if unknown:
            raise ValueError(f"unknown permissions: {', '.join(sorted(unknown))}")
        return v

    @field_validator("status")
    @classmethod
    def check_status(cls, v: str) -> str:
        if v not in TenantUserStatus.ALL:
            raise ValueError(f"status must be one of {', '.join(TenantUserStatus.ALL)}")
        return v


class TenantUserListResponse(BaseModel):
    items: list[TenantUserResponse]
    total: int
    offset: int
    limit: int


class RentalCreate(BaseModel):
    item_id: str = Field(..., min_length=1, max_length=64)
    user_id: Optional[str] = None
    rental_period: int = Field(DEFAULT_RENTAL_PERIOD_DAYS, ge=1)
    chapters: list[int] = []
    total_cost: Decimal = Field(Decimal("0"), ge=0)
    payment_method: str = "free"
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("payment_method")
    @classmethod
    def check_payment_method(cls, v: str) -> str:
        if v not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
        return v


class RentalResponse(BaseModel):
    id: str
    user_id: str
    item_id: str
    chapters: list[dict]
    status: str
    rental_period: int
    start_date: datetime
    end_date: datetime
    actual_return_date: Optional[datetime]
    total_cost: Decimal
    payment_status: str
    payment_method: str
    late_fee: Decimal
    is_late: bool
    notes: Optional[str]
    days_remaining: int = 0
    is_overdue: bool = False

    model_config = {"from_attributes": True}


class RentalListResponse(BaseModel):
    items: list[RentalResponse]
    total: int
    offset: int
    limit: int


# ============================================================
# Helper Functions
# ============================================================

def user_response(user: TenantUser) -> TenantUserResponse:
    return TenantUserResponse.model_validate(user)


def rental_response(rental: TenantRental) -> RentalResponse:
    response = RentalResponse.model_validate(rental)
    response.days_remaining = rental.get_days_remaining()
    response.is_overdue = rental.is_overdue_at()
    return response


def can_manage_rentals(context: TenantContext) -> bool:
    return context.principal.has_permission(TenantUserPermission.MANAGE_CONTENT)


async def get_rental_settings(context: TenantContext, db: DB) -> dict:
    """组织的租借设置，未关联组织时使用默认值"""
    defaults = default_organization_settings()["rental_settings"]
    if context.organization_id is None:
        return defaults
    organization = await db.get(Organization, context.organization_id)
    if organization is None:
        return defaults
    return {**defaults, **organization.rental_settings}


async def get_visible_rental(context: TenantContext, rental_id: str) -> TenantRental:
    rental = await context.rentals.get_rental(rental_id)
    if rental is None or (
        rental.user_id != context.principal.id and not can_manage_rentals(context)
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rental not found")
    return rental


def rental_error(e: Exception) -> HTTPException:
    if isinstance(e, RentalNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rental not found")
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ============================================================
# Auth
# ============================================================

@router.post("/auth/login", response_model=TenantLoginResponse)
async def tenant_login(body: TenantLoginRequest, context: TenantCtx):
    """租户用户登录"""
    try:
        user = await authenticate_tenant_user(context.users, body.username, body.password)
    except AuthError as e:
        headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None
        raise HTTPException(status_code=e.status_code, detail=e.message, headers=headers) from e

    token = create_access_token(
        subject=user.id,
        kind=TokenKind.TENANT_USER,
        subdomain=context.tenant_key,
    )
    return TenantLoginResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        subdomain=context.tenant_key,
        user=user_response(user),
    )


@router.get("/auth/me", response_model=TenantUserResponse)
async def tenant_me(context: AuthTenantCtx):
    """当前租户用户"""
    return user_response(context.principal)


@router.post("/auth/logout")
async def tenant_logout(context: AuthTenantCtx):
    """登出（无状态令牌，仅记录）"""
    logger.info("tenant_logout", user_id=context.principal.id)
    return {"ok": True, "message": "Logged out successfully"}


# ============================================================
# Users
# ============================================================

ManageUsersCtx = Annotated[
    TenantContext, Depends(require_tenant_permission(TenantUserPermission.MANAGE_USERS))
]

# 创建用户另需 owner / admin 角色
RequireTenantAdmin = Depends(require_tenant_roles(TenantUserRole.OWNER, TenantUserRole.ADMIN))


@router.get("/users", response_model=TenantUserListResponse)
async def list_tenant_users(
    context: ManageUsersCtx,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
):
    """租户用户列表（需 manage_users）"""
    users, total = await context.users.list_users(
        offset=offset, limit=limit, role=role, status=status_filter, search=search
    )
    return TenantUserListResponse(
        items=[user_response(u) for u in users],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.post(
    "/users",
    response_model=TenantUserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[RequireTenantAdmin],
)
async def create_tenant_user(body: TenantUserCreate, context: ManageUsersCtx):
    """创建租户用户（需 owner / admin 角色及 manage_users）"""
    try:
        user = await context.users.create_user(
            username=body.username,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            role=body.role,
            permissions=body.permissions,
            status=body.status,
        )
    except DuplicateUserError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return user_response(user)


# ============================================================
# Rentals
# ============================================================

@router.get("/rentals", response_model=RentalListResponse)
async def list_rentals(
    context: AuthTenantCtx,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """租借记录列表：普通用户只看自己的，manage_content 可看全部"""
    if not can_manage_rentals(context):
        user_id = context.principal.id

    rentals, total = await context.rentals.list_rentals(
        user_id=user_id, status=status_filter, offset=offset, limit=limit
    )
    return RentalListResponse(
        items=[rental_response(r) for r in rentals],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.post("/rentals", response_model=RentalResponse, status_code=status.HTTP_201_CREATED)
async def create_rental(body: RentalCreate, context: AuthTenantCtx, db: DB):
    """创建租借记录，租期不超过组织的 max_rental_days"""
    user_id = body.user_id or context.principal.id
    if user_id != context.principal.id:
        if not can_manage_rentals(context):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Required permission: manage_content",
            )
        if await context.users.get_by_id(user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    rental_settings = await get_rental_settings(context, db)
    max_days = rental_settings.get("max_rental_days")
    if max_days and body.rental_period > max_days:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Rental period cannot exceed {max_days} days",
        )

    rental = await context.rentals.create_rental(
        user_id=user_id,
        item_id=body.item_id,
        rental_period=body.rental_period,
        total_cost=body.total_cost,
        payment_method=body.payment_method,
        chapters=body.chapters,
        notes=body.notes,
    )
    return rental_response(rental)


@router.get("/rentals/{rental_id}", response_model=RentalResponse)
async def get_rental(rental_id: str, context: AuthTenantCtx):
    return rental_response(await get_visible_rental(context, rental_id))


@router.post("/rentals/{rental_id}/return", response_model=RentalResponse)
async def return_rental(rental_id: str, context: AuthTenantCtx, db: DB):
    """归还，按组织设置计算逾期费"""
    await get_visible_rental(context, rental_id)
    rental_settings = await get_rental_settings(context, db)

    try:
        rental = await context.rentals.return_rental(
            rental_id,
            late_fee_per_day=rental_settings.get("late_fee_per_day", 0),
            grace_period_days=rental_settings.get("grace_period_days", 0),
        )
    except (RentalNotFoundError, InvalidRentalStateError) as e:
        raise rental_error(e) from e
    return rental_response(rental)


@router.post("/rentals/{rental_id}/cancel", response_model=RentalResponse)
async def cancel_rental(rental_id: str, context: AuthTenantCtx):
    """取消租借"""
    await get_visible_rental(context, rental_id)

    try:
        rental = await context.rentals.cancel_rental(rental_id)
    except (RentalNotFoundError, InvalidRentalStateError) as e:
        raise rental_error(e) from e
    return rental_response(rental)
