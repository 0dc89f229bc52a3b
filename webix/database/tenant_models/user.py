"""
租户用户模型

存放在各租户自己的数据库中，与控制面 users 表互不相干
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from webix.core.security import is_locked
from webix.database.base import StringUUIDPrimaryKeyMixin, TenantBase, TimestampMixin
from webix.database.models.user import UserPermission, UserRole, UserStatus

# 租户库沿用控制面的角色、权限、状态取值
TenantUserRole = UserRole
TenantUserPermission = UserPermission
TenantUserStatus = UserStatus


class TenantUser(TenantBase, StringUUIDPrimaryKeyMixin, TimestampMixin):
    """租户用户实体"""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, index=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(50))
    last_name: Mapped[Optional[str]] = mapped_column(String(50))
    hashed_password: Mapped[str] = mapped_column(String(200), nullable=False)

    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER, nullable=False)
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=UserStatus.ACTIVE, nullable=False)

    # 登录信息
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column()
    last_login_at: Mapped[Optional[datetime]] = mapped_column()

    def __repr__(self) -> str:
        return f"<TenantUser(id={self.id}, username={self.username}, role={self.role})>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_locked(self) -> bool:
        return is_locked(self.lock_until)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def has_permission(self, permission: str) -> bool:
        return permission in (self.permissions or [])
