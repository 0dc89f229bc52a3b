"""
组织 API

注册、列表、查询、子域名可用性、更新、软删除、验证
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field, field_validator

from webix.api.deps import DB, CurrentPrincipal, SuperAdmin, Tenancy
from webix.database.models.organization import (
    BUSINESS_TYPES,
    INDUSTRIES,
    Organization,
    OrganizationStatus,
)
from webix.services.organization_service import OrganizationError, OrganizationService
from webix.tenancy.keys import normalize_tenant_key

router = APIRouter()


# ============================================================
# Schemas
# ============================================================

class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "Mongolia"
    coordinates: list[float] = [0, 0]


class OwnerCreate(BaseModel):
    """注册时一并创建的所有者账号"""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=r"^[0-9+\-\s()]+$")


class OrganizationCreate(BaseModel):
    """注册组织请求"""
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    email: list[EmailStr] = []
    phone: list[str] = []
    website: Optional[str] = Field(None, pattern=r"^https?://.+")
    registration_number: str = Field(..., min_length=1, max_length=100)
    tax_id: Optional[str] = None
    address: Optional[Address] = None
    subdomain: str
    custom_domain: Optional[str] = None
    business_type: str = "publisher"
    industry: str = "webtoon"
    admin_user: Optional[OwnerCreate] = None

    @field_validator("business_type")
    @classmethod
    def check_business_type(cls, v: str) -> str:
        if v not in BUSINESS_TYPES:
            raise ValueError(f"business_type must be one of {', '.join(BUSINESS_TYPES)}")
        return v

    @field_validator("industry")
    @classmethod
    def check_industry(cls, v: str) -> str:
        if v not in INDUSTRIES:
            raise ValueError(f"industry must be one of {', '.join(INDUSTRIES)}")
        return v


class OrganizationUpdate(BaseModel):
    """更新组织请求（只更新提供的字段）"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    email: Optional[list[EmailStr]] = None
    phone: Optional[list[str]] = None
    website: Optional[str] = Field(None, pattern=r"^https?://.+")
    tax_id: Optional[str] = None
    address: Optional[Address] = None
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    business_type: Optional[str] = None
    industry: Optional[str] = None
    subscription: Optional[dict[str, Any]] = None
    settings: Optional[dict[str, Any]] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in OrganizationStatus.ALL:
            raise ValueError(f"status must be one of {', '.join(OrganizationStatus.ALL)}")
        return v


class OrganizationAdminResponse(BaseModel):
    user_id: str
    role: str
    permissions: list[str]
    added_at: datetime

    model_config = {"from_attributes": True}


class OrganizationResponse(BaseModel):
    """组织响应（不含验证令牌）"""
    id: str
    name: str
    display_name: str
    description: Optional[str]
    email: list[str]
    phone: list[str]
    website: Optional[str]
    registration_number: str
    tax_id: Optional[str]
    address: dict[str, Any]
    subdomain: str
    custom_domain: Optional[str]
    domain_url: str
    business_type: str
    industry: str
    subscription: dict[str, Any]
    settings: dict[str, Any]
    status: str
    is_verified: bool
    stats: dict[str, Any]
    admin_users: list[OrganizationAdminResponse]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class OrganizationListResponse(BaseModel):
    items: list[OrganizationResponse]
    pagination: Pagination


class SubdomainAvailability(BaseModel):
    subdomain: str
    available: bool


def to_http_error(e: OrganizationError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ============================================================
# Routes
# ============================================================

@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def register_organization(body: OrganizationCreate, db: DB):
    """注册组织（公开）"""
    data = body.model_dump(exclude={"admin_user"})
    if body.address is not None:
        data["address"] = body.address.model_dump()
    admin_user = body.admin_user.model_dump() if body.admin_user else None

    try:
        organization = await OrganizationService(db).register(data, admin_user)
    except OrganizationError as e:
        raise to_http_error(e) from e
    return organization


@router.get("", response_model=OrganizationListResponse)
async def list_organizations(
    db: DB,
    admin: SuperAdmin,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    sort: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
):
    """组织列表（超级管理员）"""
    return await OrganizationService(db).list_organizations(
        page=page,
        limit=limit,
        status=status_filter,
        search=search,
        sort=sort,
        order=order,
    )


@router.get("/check-subdomain/{subdomain}", response_model=SubdomainAvailability)
async def check_subdomain_availability(subdomain: str, db: DB):
    """子域名是否可用（公开）"""
    key = normalize_tenant_key(subdomain)
    available = await OrganizationService(db).is_subdomain_available(key)
    return SubdomainAvailability(subdomain=key, available=available)


@router.get("/subdomain/{subdomain}", response_model=OrganizationResponse)
async def get_organization_by_subdomain(subdomain: str, db: DB):
    """按子域名查询 active / pending 组织（公开）"""
    try:
        return await OrganizationService(db).get_by_subdomain(subdomain)
    except OrganizationError as e:
        raise to_http_error(e) from e


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(organization_id: str, db: DB, principal: CurrentPrincipal):
    """按 ID 查询组织"""
    try:
        return await OrganizationService(db).get(organization_id)
    except OrganizationError as e:
        raise to_http_error(e) from e


@router.put("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    body: OrganizationUpdate,
    db: DB,
    principal: CurrentPrincipal,
    tenancy: Tenancy,
):
    """更新组织（组织管理员或超级管理员）"""
    changes = body.model_dump(exclude_unset=True)
    if body.address is not None:
        changes["address"] = body.address.model_dump()

    try:
        return await OrganizationService(db, tenancy).update(organization_id, changes, principal)
    except OrganizationError as e:
        raise to_http_error(e) from e


@router.delete("/{organization_id}")
async def delete_organization(
    organization_id: str,
    db: DB,
    principal: CurrentPrincipal,
    tenancy: Tenancy,
):
    """软删除组织（组织所有者或超级管理员）"""
    try:
        organization: Organization = await OrganizationService(db, tenancy).delete(
            organization_id, principal
        )
    except OrganizationError as e:
        raise to_http_error(e) from e
    return {"ok": True, "message": "Organization deleted successfully", "id": organization.id}


@router.post("/{organization_id}/verify", response_model=OrganizationResponse)
async def verify_organization(organization_id: str, db: DB, admin: SuperAdmin):
    """验证组织（超级管理员）"""
    try:
        return await OrganizationService(db).verify(organization_id)
    except OrganizationError as e:
        raise to_http_error(e) from e
