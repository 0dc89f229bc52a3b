"""
数据库健康检查
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from webix.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DBHealthStatus:
    """数据库健康状态"""

    healthy: bool
    latency_ms: float
    database: Optional[str] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "latency_ms": self.latency_ms,
            "database": self.database,
            "error": self.error,
            "checked_at": self.checked_at.isoformat(),
        }


async def check_db_health(engine: AsyncEngine, database: Optional[str] = None) -> DBHealthStatus:
    """
    检查数据库健康状态

    Args:
        engine: 待检查的引擎（控制面或某个租户库）
        database: 逻辑库名，仅用于展示

    Returns:
        DBHealthStatus: 健康状态对象
    """
    start = time.perf_counter()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.warning("db_health_check_failed", database=database, error=str(e))
        return DBHealthStatus(
            healthy=False,
            latency_ms=round(latency_ms, 2),
            database=database,
            error=str(e),
        )

    latency_ms = (time.perf_counter() - start) * 1000
    return DBHealthStatus(healthy=True, latency_ms=round(latency_ms, 2), database=database)
