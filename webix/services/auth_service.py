"""
认证服务

平台管理员、组织用户、租户用户三类主体共用同一套锁定策略：
连续失败 AUTH_MAX_LOGIN_FAILS 次后锁定 AUTH_LOCKOUT_MINUTES 分钟
"""

from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from webix.core.logging import get_logger
from webix.core.security import get_password_hash, next_lockout_state, verify_password
from webix.database.models import Admin, User, UserStatus
from webix.database.tenant_models import TenantUser
from webix.tenancy.stores import UserStore

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


class AuthError(Exception):
    """认证错误基类，由路由层映射为 HTTPException"""

    status_code = 401

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidCredentialsError(AuthError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountLockedError(AuthError):
    status_code = 423

    def __init__(
        self,
        message: str = "Account is temporarily locked due to too many failed login attempts",
    ):
        super().__init__(message)


class AccountInactiveError(AuthError):
    def __init__(self, message: str = "Account is not active"):
        super().__init__(message)


class PasswordChangeError(AuthError):
    status_code = 400


async def authenticate_tenant_user(
    users: UserStore,
    username: str,
    password: str,
) -> TenantUser:
    """
    租户用户登录

    通过租户模型集中的 UserStore 查询，不关心连接细节

    Raises:
        InvalidCredentialsError: 用户不存在或密码错误
        AccountLockedError: 账户锁定中
        AccountInactiveError: 账户非 active
    """
    user = await users.get_by_username(username)
    if user is None:
        raise InvalidCredentialsError()

    if user.is_locked:
        raise AccountLockedError()

    if not user.is_active:
        raise AccountInactiveError()

    if not verify_password(password, user.hashed_password):
        await users.record_failed_login(user.id)
        logger.info("tenant_login_failed", user_id=user.id)
        raise InvalidCredentialsError()

    user = await users.record_successful_login(user.id)
    logger.info("tenant_login_succeeded", user_id=user.id)
    return user


class AuthService:
    """控制面认证服务"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def authenticate_admin(self, username: str, password: str) -> Admin:
        """平台管理员登录，username 也可以是邮箱"""
        identifier = username.strip().lower()
        result = await self.session.execute(
            select(Admin).where(
                or_(Admin.username == identifier, Admin.email == identifier)
            )
        )
        admin = result.scalar_one_or_none()
        if admin is None:
            raise InvalidCredentialsError()

        if admin.is_locked:
            raise AccountLockedError()

        if not admin.is_active:
            raise AccountInactiveError()

        await self._check_password(admin, password)
        logger.info("admin_login_succeeded", admin_id=admin.id)
        return admin

    async def authenticate_user(self, email: str, password: str) -> User:
        """组织用户登录"""
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise InvalidCredentialsError()

        if user.is_locked:
            raise AccountLockedError()

        if user.status != UserStatus.ACTIVE:
            raise AccountInactiveError()

        await self._check_password(user, password)
        logger.info("user_login_succeeded", user_id=user.id)
        return user

    async def _check_password(self, principal: Union[Admin, User], password: str) -> None:
        now = datetime.now(timezone.utc)

        if not verify_password(password, principal.hashed_password):
            principal.login_attempts, principal.lock_until = next_lockout_state(
                principal.login_attempts, principal.lock_until, now
            )
            await self.session.commit()
            logger.info(
                "login_failed",
                principal_id=principal.id,
                login_attempts=principal.login_attempts,
                locked=principal.lock_until is not None,
            )
            raise InvalidCredentialsError()

        principal.login_attempts = 0
        principal.lock_until = None
        principal.last_login_at = now
        await self.session.commit()

    async def change_password(
        self,
        principal: Union[Admin, User],
        current_password: str,
        new_password: str,
    ) -> None:
        """修改密码，需校验当前密码"""
        if not verify_password(current_password, principal.hashed_password):
            raise PasswordChangeError("Current password is incorrect")

        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise PasswordChangeError(
                f"New password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

        principal.hashed_password = get_password_hash(new_password)
        await self.session.commit()
        logger.info("password_changed", principal_id=principal.id)

    async def get_admin(self, admin_id: str) -> Optional[Admin]:
        return await self.session.get(Admin, admin_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.session.get(User, user_id)
