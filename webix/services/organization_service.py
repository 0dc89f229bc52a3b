"""
组织服务

组织注册、查询、更新、软删除、验证。
subdomain 即 TenantKey：变更或删除组织时关闭对应的租户连接。
"""

import math
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from webix.core.config import settings
from webix.core.logging import get_logger
from webix.core.security import get_password_hash
from webix.database.models import (
    Admin,
    Organization,
    OrganizationAdmin,
    OrganizationAdminRole,
    OrganizationStatus,
    User,
    UserPermission,
    UserRole,
    UserStatus,
)
from webix.tenancy.keys import normalize_tenant_key

logger = get_logger(__name__)

Actor = Union[Admin, User]

# 可排序字段
SORTABLE_FIELDS = {
    "created_at": Organization.created_at,
    "updated_at": Organization.updated_at,
    "name": Organization.name,
    "display_name": Organization.display_name,
    "subdomain": Organization.subdomain,
    "status": Organization.status,
}

# 允许通过 update 修改的字段
UPDATABLE_FIELDS = {
    "name",
    "display_name",
    "description",
    "email",
    "phone",
    "website",
    "tax_id",
    "address",
    "subdomain",
    "custom_domain",
    "business_type",
    "industry",
    "subscription",
    "settings",
    "status",
}


class OrganizationError(Exception):
    """组织服务错误基类，由路由层映射为 HTTPException"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrganizationNotFoundError(OrganizationError):
    status_code = 404

    def __init__(self, message: str = "Organization not found"):
        super().__init__(message)


class SubdomainTakenError(OrganizationError):
    def __init__(self, message: str = "Subdomain is already taken"):
        super().__init__(message)


class RegistrationNumberExistsError(OrganizationError):
    def __init__(self, message: str = "Registration number already exists"):
        super().__init__(message)


class EmailTakenError(OrganizationError):
    def __init__(self, message: str = "User with this email already exists"):
        super().__init__(message)


class OrganizationPermissionError(OrganizationError):
    status_code = 403


def is_super_admin(actor: Actor) -> bool:
    return isinstance(actor, Admin) and actor.is_super_admin


class OrganizationService:
    """
    组织服务

    Args:
        session: 控制面会话
        tenancy: 多租户运行时，用于在变更后关闭租户连接（可选）
    """

    def __init__(self, session: AsyncSession, tenancy: Optional[Any] = None):
        self.session = session
        self.tenancy = tenancy

    # ============================================================
    # 查询
    # ============================================================

    async def get(self, organization_id: str) -> Organization:
        organization = await self.session.get(Organization, organization_id)
        if organization is None:
            raise OrganizationNotFoundError()
        return organization

    async def find_by_subdomain(self, subdomain: str) -> Optional[Organization]:
        """只返回 active / pending 的组织"""
        result = await self.session.execute(
            select(Organization).where(
                Organization.subdomain == subdomain.strip().lower(),
                Organization.status.in_(OrganizationStatus.ROUTABLE),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_subdomain(self, subdomain: str) -> Organization:
        organization = await self.find_by_subdomain(subdomain)
        if organization is None:
            raise OrganizationNotFoundError()
        return organization

    async def is_subdomain_available(
        self, subdomain: str, exclude_id: Optional[str] = None
    ) -> bool:
        """
        子域名是否可用

        已软删除的组织仍占用其子域名：对应的租户库以子域名命名且数据保留
        """
        query = select(Organization.id).where(
            Organization.subdomain == normalize_tenant_key(subdomain)
        )
        if exclude_id:
            query = query.where(Organization.id != exclude_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none() is None

    async def list_organizations(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort: str = "created_at",
        order: str = "desc",
    ) -> dict:
        """
        分页列出组织

        Returns:
            {"items": [...], "pagination": {...}}
        """
        page = max(page, 1)
        limit = max(limit, 1)

        query = select(Organization)
        if status:
            query = query.where(Organization.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(Organization.name).like(pattern),
                    func.lower(Organization.display_name).like(pattern),
                    func.lower(Organization.subdomain).like(pattern),
                    func.lower(Organization.registration_number).like(pattern),
                )
            )

        total = await self.session.scalar(select(func.count()).select_from(query.subquery()))
        total = total or 0

        column = SORTABLE_FIELDS.get(sort, Organization.created_at)
        query = query.order_by(column.asc() if order == "asc" else column.desc())

        result = await self.session.execute(query.offset((page - 1) * limit).limit(limit))

        return {
            "items": list(result.scalars().all()),
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_items": total,
                "items_per_page": limit,
            },
        }

    # ============================================================
    # 注册与变更
    # ============================================================

    async def register(
        self,
        data: dict[str, Any],
        admin_user: Optional[dict[str, Any]] = None,
    ) -> Organization:
        """
        注册组织

        Args:
            data: 组织字段
            admin_user: 可选的所有者账号（first_name/last_name/email/password/phone）

        Raises:
            InvalidTenantKeyFormat: 子域名格式不合法
            SubdomainTakenError / RegistrationNumberExistsError / EmailTakenError
        """
        subdomain = normalize_tenant_key(data["subdomain"])
        if not await self.is_subdomain_available(subdomain):
            raise SubdomainTakenError()

        existing = await self.session.execute(
            select(Organization.id).where(
                Organization.registration_number == data["registration_number"]
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise RegistrationNumberExistsError()

        fields = {k: v for k, v in data.items() if v is not None}
        fields["subdomain"] = subdomain
        for reserved in ("status", "is_verified", "admin_users"):
            fields.pop(reserved, None)
        organization = Organization(
            **fields,
            status=OrganizationStatus.PENDING,
            is_verified=False,
            verification_token=secrets.token_hex(32),
            verification_expires=datetime.now(timezone.utc)
            + timedelta(hours=settings.ORGANIZATION_VERIFICATION_HOURS),
            admin_users=[],
        )
        self.session.add(organization)
        await self.session.flush()

        if admin_user:
            owner = await self._create_owner(organization, admin_user)
            organization.admin_users.append(
                OrganizationAdmin(
                    user_id=owner.id,
                    role=OrganizationAdminRole.OWNER,
                    permissions=list(UserPermission.ALL),
                )
            )

        await self.session.commit()
        logger.info(
            "organization_registered",
            organization_id=organization.id,
            subdomain=subdomain,
            with_owner=bool(admin_user),
        )
        return organization

    async def _create_owner(self, organization: Organization, admin_user: dict[str, Any]) -> User:
        email = admin_user["email"].strip().lower()
        existing = await self.session.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise EmailTakenError()

        owner = User(
            organization_id=organization.id,
            first_name=admin_user["first_name"],
            last_name=admin_user["last_name"],
            email=email,
            phone=admin_user.get("phone"),
            hashed_password=get_password_hash(admin_user["password"]),
            role=UserRole.OWNER,
            permissions=list(UserPermission.ALL),
            status=UserStatus.ACTIVE,
        )
        self.session.add(owner)
        await self.session.flush()
        return owner

    async def update(
        self,
        organization_id: str,
        changes: dict[str, Any],
        actor: Actor,
    ) -> Organization:
        """
        更新组织（组织管理员或超级管理员）

        子域名变更时校验可用性，并关闭旧子域名的租户连接
        """
        organization = await self.get(organization_id)

        if not is_super_admin(actor) and organization.find_admin(actor.id) is None:
            raise OrganizationPermissionError("Access denied. Admin privileges required.")

        old_subdomain = organization.subdomain
        new_subdomain = changes.get("subdomain")
        if new_subdomain is not None:
            new_subdomain = normalize_tenant_key(new_subdomain)
            changes = {**changes, "subdomain": new_subdomain}
            if new_subdomain != old_subdomain and not await self.is_subdomain_available(
                new_subdomain, exclude_id=organization.id
            ):
                raise SubdomainTakenError()

        for field, value in changes.items():
            if field in UPDATABLE_FIELDS:
                setattr(organization, field, value)

        await self.session.commit()
        logger.info(
            "organization_updated",
            organization_id=organization.id,
            fields=sorted(k for k in changes if k in UPDATABLE_FIELDS),
        )

        if organization.subdomain != old_subdomain:
            logger.warning(
                "organization_subdomain_changed",
                organization_id=organization.id,
                old=old_subdomain,
                new=organization.subdomain,
            )
            await self._close_tenant(old_subdomain)
        elif organization.status not in OrganizationStatus.ROUTABLE:
            await self._close_tenant(old_subdomain)

        return organization

    async def delete(self, organization_id: str, actor: Actor) -> Organization:
        """软删除（组织所有者或超级管理员），并关闭租户连接"""
        organization = await self.get(organization_id)

        admin = organization.find_admin(actor.id)
        is_owner = admin is not None and admin.role == OrganizationAdminRole.OWNER
        if not is_owner and not is_super_admin(actor):
            raise OrganizationPermissionError("Access denied. Owner privileges required.")

        organization.status = OrganizationStatus.DELETED
        organization.deleted_at = datetime.now(timezone.utc)
        await self.session.commit()

        logger.info("organization_deleted", organization_id=organization.id)
        await self._close_tenant(organization.subdomain)
        return organization

    async def verify(self, organization_id: str) -> Organization:
        organization = await self.get(organization_id)
        organization.is_verified = True
        organization.status = OrganizationStatus.ACTIVE
        organization.verification_token = None
        organization.verification_expires = None
        await self.session.commit()

        logger.info("organization_verified", organization_id=organization.id)
        return organization

    async def _close_tenant(self, subdomain: str) -> None:
        if self.tenancy is not None:
            await self.tenancy.close_tenant(subdomain)
