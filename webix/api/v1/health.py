"""
健康检查 API
"""

from fastapi import APIRouter

from webix import __version__
from webix.api.deps import Tenancy
from webix.database.health import check_db_health

router = APIRouter()


@router.get("")
async def health_check(tenancy: Tenancy):
    """
    健康检查

    返回服务、控制面数据库状态与已打开的租户连接数
    """
    connection = tenancy.control_plane
    db_status = await check_db_health(connection.engine, connection.database_name)

    return {
        "status": "healthy" if db_status.healthy else "unhealthy",
        "service": "webix-udirdlaga",
        "version": __version__,
        "database": db_status.to_dict(),
        "tenant_connections": len(tenancy.registry),
    }


@router.get("/ready")
async def readiness_check(tenancy: Tenancy):
    """
    就绪检查

    用于 Kubernetes readiness probe
    """
    connection = tenancy.control_plane
    db_status = await check_db_health(connection.engine, connection.database_name)

    if not db_status.healthy:
        return {"ready": False, "reason": "database_unavailable"}

    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """
    存活检查

    用于 Kubernetes liveness probe
    """
    return {"alive": True}
