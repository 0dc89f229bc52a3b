"""
API 路由模块

统一注册所有 API 路由
"""

from fastapi import APIRouter

from webix.api.v1 import (
    auth,
    health,
    organizations,
    tenant,
    tenants,
)

router = APIRouter()

# 健康检查
router.include_router(health.router, prefix="/health", tags=["健康检查"])

# 控制面认证
router.include_router(auth.router, prefix="/auth", tags=["认证"])

# 组织管理
router.include_router(organizations.router, prefix="/organizations", tags=["组织"])

# 租户连接运维
router.include_router(tenants.router, prefix="/tenants", tags=["租户连接"])

# 租户业务（子域名在路径中，由租户解析器提取）
router.include_router(tenant.router, prefix="/tenant/{subdomain}", tags=["租户"])
