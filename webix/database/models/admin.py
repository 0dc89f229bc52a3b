"""
平台管理员模型（控制面）
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from webix.core.security import is_locked
from webix.database.base import Base, StringUUIDPrimaryKeyMixin, TimestampMixin


class AdminRole:
    """平台管理员角色常量"""
    SUPER_ADMIN = "super_admin"


class Admin(Base, StringUUIDPrimaryKeyMixin, TimestampMixin):
    """平台管理员：跨组织，管理组织注册与租户连接"""

    __tablename__ = "admins"

    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(30), default=AdminRole.SUPER_ADMIN, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # 登录信息
    last_login_at: Mapped[Optional[datetime]] = mapped_column()
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column()

    def __repr__(self) -> str:
        return f"<Admin(id={self.id}, username={self.username})>"

    @property
    def is_locked(self) -> bool:
        return is_locked(self.lock_until)

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN
