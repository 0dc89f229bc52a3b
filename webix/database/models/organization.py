"""
组织模型

控制面表：每个组织对应一个租户库，subdomain 即 TenantKey 来源
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webix.core.config import settings as app_settings
from webix.database.base import (
    Base,
    SoftDeleteMixin,
    StringUUIDPrimaryKeyMixin,
    TimestampMixin,
    utcnow,
)


class OrganizationStatus:
    """组织状态常量"""
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"  # 软删除，行永远保留

    ALL = (PENDING, ACTIVE, INACTIVE, SUSPENDED, DELETED)
    # 可作为租户被路由的状态
    ROUTABLE = (ACTIVE, PENDING)


class OrganizationAdminRole:
    """组织管理员角色常量"""
    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"

    ALL = (OWNER, ADMIN, MODERATOR)


BUSINESS_TYPES = ("publisher", "distributor", "retailer", "library", "other")
INDUSTRIES = ("webtoon", "manga", "comics", "books", "media", "education", "other")
SUBSCRIPTION_PLANS = ("free", "basic", "premium", "enterprise")


def default_subscription() -> dict:
    return {
        "plan": "free",
        "status": "active",
        "start_date": utcnow().isoformat(),
        "end_date": None,
        "auto_renew": True,
    }


def default_organization_settings() -> dict:
    return {
        "max_storage": 1024,  # MB
        "rental_settings": {
            "max_rental_days": 30,
            "late_fee_per_day": 0,
            "grace_period_days": 3,
            "auto_return": False,
        },
        "user_settings": {
            "allow_self_registration": True,
            "require_email_verification": True,
            "max_users": 50,
        },
        "notifications": {
            "email_notifications": True,
            "sms_notifications": False,
            "push_notifications": True,
        },
    }


def default_organization_stats() -> dict:
    return {"total_users": 0, "total_rentals": 0, "last_activity": None}


class Organization(Base, StringUUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    组织实体

    subdomain 与 registration_number 全局唯一；
    删除只把 status 置为 deleted 并记录 deleted_at
    """

    __tablename__ = "organizations"

    # 基本信息
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # 联系方式
    email: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    phone: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    website: Mapped[Optional[str]] = mapped_column(String(500))

    # 注册信息
    registration_number: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False
    )
    tax_id: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # 子域名
    subdomain: Mapped[str] = mapped_column(String(63), unique=True, index=True, nullable=False)
    custom_domain: Mapped[Optional[str]] = mapped_column(String(253))

    # 业务配置
    business_type: Mapped[str] = mapped_column(String(20), default="publisher", nullable=False)
    industry: Mapped[str] = mapped_column(String(20), default="webtoon", nullable=False)

    # 订阅与设置
    subscription: Mapped[dict] = mapped_column(JSON, default=default_subscription, nullable=False)
    settings: Mapped[dict] = mapped_column(
        JSON, default=default_organization_settings, nullable=False
    )

    # 状态
    status: Mapped[str] = mapped_column(
        String(20), default=OrganizationStatus.PENDING, index=True, nullable=False
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_token: Mapped[Optional[str]] = mapped_column(String(100))
    verification_expires: Mapped[Optional[datetime]] = mapped_column()

    # 统计
    stats: Mapped[dict] = mapped_column(JSON, default=default_organization_stats, nullable=False)

    # 关系
    admin_users: Mapped[List["OrganizationAdmin"]] = relationship(
        "OrganizationAdmin",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, subdomain={self.subdomain}, status={self.status})>"

    @property
    def domain_url(self) -> str:
        """组织访问地址：优先自定义域名"""
        if self.custom_domain:
            return f"https://{self.custom_domain}"
        return f"https://{self.subdomain}.{app_settings.ORGANIZATION_BASE_DOMAIN}"

    @property
    def rental_settings(self) -> dict:
        return (self.settings or {}).get("rental_settings", {})

    def find_admin(self, user_id: str) -> Optional["OrganizationAdmin"]:
        """按用户 ID 查找管理员条目"""
        for admin in self.admin_users:
            if admin.user_id == user_id:
                return admin
        return None


class OrganizationAdmin(Base, StringUUIDPrimaryKeyMixin):
    """组织管理员条目（用户引用 + 角色 + 权限）"""

    __tablename__ = "organization_admins"

    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(20), default=OrganizationAdminRole.ADMIN, nullable=False
    )
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    added_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="admin_users"
    )

    def __repr__(self) -> str:
        return f"<OrganizationAdmin(org={self.organization_id}, user={self.user_id}, role={self.role})>"
