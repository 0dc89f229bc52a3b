"""
控制面认证 API

平台管理员登录、组织用户登录、当前主体、登出、修改密码。
令牌为无状态 JWT，登出只记录日志，由客户端丢弃令牌。
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

import structlog

from webix.api.deps import DB, CurrentPrincipal
from webix.core.config import settings
from webix.core.security import TokenKind, create_access_token
from webix.database.models import Admin, User
from webix.services.auth_service import AuthError, AuthService

logger = structlog.get_logger(__name__)

router = APIRouter()


# ============================================================
# Schemas
# ============================================================

class AdminLoginRequest(BaseModel):
    """平台管理员登录请求（username 也可填邮箱）"""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserLoginRequest(BaseModel):
    """组织用户登录请求"""
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class PrincipalInfo(BaseModel):
    """当前主体信息"""
    id: str
    kind: str
    email: str
    role: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization_id: Optional[str] = None
    permissions: list[str] = []
    last_login_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    principal: PrincipalInfo


class MessageResponse(BaseModel):
    ok: bool = True
    message: str


# ============================================================
# Helper Functions
# ============================================================

def principal_info(principal: Admin | User) -> PrincipalInfo:
    if isinstance(principal, Admin):
        return PrincipalInfo(
            id=principal.id,
            kind=TokenKind.ADMIN,
            email=principal.email,
            role=principal.role,
            username=principal.username,
            last_login_at=principal.last_login_at,
        )
    return PrincipalInfo(
        id=principal.id,
        kind=TokenKind.USER,
        email=principal.email,
        role=principal.role,
        first_name=principal.first_name,
        last_name=principal.last_name,
        organization_id=principal.organization_id,
        permissions=list(principal.permissions or []),
        last_login_at=principal.last_login_at,
    )


def issue_token(principal: Admin | User) -> TokenResponse:
    kind = TokenKind.ADMIN if isinstance(principal, Admin) else TokenKind.USER
    return TokenResponse(
        access_token=create_access_token(subject=principal.id, kind=kind),
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        principal=principal_info(principal),
    )


def to_http_error(e: AuthError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None
    return HTTPException(status_code=e.status_code, detail=e.message, headers=headers)


# ============================================================
# Routes
# ============================================================

@router.post("/login", response_model=TokenResponse)
async def admin_login(body: AdminLoginRequest, db: DB):
    """平台管理员登录"""
    try:
        admin = await AuthService(db).authenticate_admin(body.username, body.password)
    except AuthError as e:
        raise to_http_error(e) from e
    return issue_token(admin)


@router.post("/user-login", response_model=TokenResponse)
async def user_login(body: UserLoginRequest, db: DB):
    """组织用户登录"""
    try:
        user = await AuthService(db).authenticate_user(body.email, body.password)
    except AuthError as e:
        raise to_http_error(e) from e
    return issue_token(user)


@router.get("/me", response_model=PrincipalInfo)
async def get_me(principal: CurrentPrincipal):
    """获取当前主体"""
    return principal_info(principal)


@router.post("/logout", response_model=MessageResponse)
async def logout(principal: CurrentPrincipal):
    """登出（无状态令牌，仅记录）"""
    logger.info("logout", principal_id=principal.id)
    return MessageResponse(message="Logged out successfully")


@router.put("/change-password", response_model=MessageResponse)
async def change_password(body: ChangePasswordRequest, principal: CurrentPrincipal, db: DB):
    """修改密码"""
    try:
        await AuthService(db).change_password(principal, body.current_password, body.new_password)
    except AuthError as e:
        raise to_http_error(e) from e
    return MessageResponse(message="Password changed successfully")
