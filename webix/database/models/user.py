"""
组织用户模型（控制面）

每个用户属于且仅属于一个组织
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webix.core.security import is_locked
from webix.database.base import Base, StringUUIDPrimaryKeyMixin, TimestampMixin


class UserRole:
    """组织用户角色常量"""
    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"

    ALL = (OWNER, ADMIN, MODERATOR, USER)


class UserPermission:
    """组织用户权限常量"""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE_USERS = "manage_users"
    MANAGE_CONTENT = "manage_content"
    MANAGE_SETTINGS = "manage_settings"

    ALL = (READ, WRITE, DELETE, MANAGE_USERS, MANAGE_CONTENT, MANAGE_SETTINGS)


class UserStatus:
    """账户状态常量"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"

    ALL = (ACTIVE, INACTIVE, SUSPENDED, PENDING_VERIFICATION)


def default_preferences() -> dict:
    return {
        "language": "mn",
        "theme": "light",
        "notifications": {"email": True, "push": True, "sms": False},
    }


def default_user_stats() -> dict:
    return {"total_rentals": 0, "active_rentals": 0, "overdue_rentals": 0}


class User(Base, StringUUIDPrimaryKeyMixin, TimestampMixin):
    """
    组织用户实体

    hashed_password 永远不出现在 API 响应中
    """

    __tablename__ = "users"

    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 基本信息
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    avatar: Mapped[Optional[str]] = mapped_column(String(500))
    bio: Mapped[Optional[str]] = mapped_column(Text)

    # 角色与权限
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER, index=True, nullable=False)
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # 状态
    status: Mapped[str] = mapped_column(
        String(30), default=UserStatus.PENDING_VERIFICATION, index=True, nullable=False
    )
    is_email_verified: Mapped[bool] = mapped_column(default=False, nullable=False)

    # 登录信息
    last_login_at: Mapped[Optional[datetime]] = mapped_column()
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column()

    # 偏好、租借记录、统计
    preferences: Mapped[dict] = mapped_column(JSON, default=default_preferences, nullable=False)
    rental_history: Mapped[List[dict]] = mapped_column(JSON, default=list, nullable=False)
    stats: Mapped[dict] = mapped_column(JSON, default=default_user_stats, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_locked(self) -> bool:
        return is_locked(self.lock_until)

    def has_permission(self, permission: str) -> bool:
        return permission in (self.permissions or [])
