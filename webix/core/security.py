"""
安全模块

JWT 认证、密码哈希、账户锁定计算
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from webix.core.config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PASSWORD_BCRYPT_ROUNDS,
)


class TokenKind:
    """令牌主体类型"""
    ADMIN = "admin"              # 平台管理员
    USER = "user"                # 控制面组织用户
    TENANT_USER = "tenant_user"  # 租户库用户


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """验证密码"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """生成密码哈希"""
    return pwd_context.hash(password)


def create_access_token(
    subject: str,
    kind: str,
    subdomain: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[dict[str, Any]] = None,
) -> str:
    """
    创建访问令牌

    租户用户的令牌必须携带 subdomain，校验时与请求解析出的租户比对
    """
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": subject,
        "kind": kind,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if subdomain:
        to_encode["subdomain"] = subdomain

    if extra_claims:
        to_encode.update(extra_claims)

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """解码令牌，无效或过期返回 None"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite 读回的时间不带时区，统一按 UTC 处理"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_locked(lock_until: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """账户是否处于锁定期"""
    lock_until = as_utc(lock_until)
    if lock_until is None:
        return False
    return lock_until > (now or datetime.now(timezone.utc))


def next_lockout_state(
    login_attempts: int,
    lock_until: Optional[datetime],
    now: Optional[datetime] = None,
) -> tuple[int, Optional[datetime]]:
    """
    计算一次登录失败后的 (login_attempts, lock_until)

    - 上一次锁定已过期：从 1 重新计数并解除锁定
    - 失败次数达到 AUTH_MAX_LOGIN_FAILS：锁定 AUTH_LOCKOUT_MINUTES
    """
    now = now or datetime.now(timezone.utc)
    lock_until = as_utc(lock_until)

    if lock_until is not None and lock_until <= now:
        return 1, None

    attempts = (login_attempts or 0) + 1
    if attempts >= settings.AUTH_MAX_LOGIN_FAILS and not is_locked(lock_until, now):
        return attempts, now + timedelta(minutes=settings.AUTH_LOCKOUT_MINUTES)

    return attempts, lock_until
