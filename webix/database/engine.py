"""
数据库引擎构建

控制面与租户库共用同一台数据库服务器：
- 控制面：DATABASE_URL 指定的逻辑库
- 租户库：同一主机/凭据，库名替换为 <prefix>_<TenantKey>

连接池配置说明：
- pool_size: 连接池中保持的连接数（默认 5）
- max_overflow: 超出 pool_size 后允许的额外连接数（默认 10）
- pool_timeout: 获取连接的超时时间（秒）
- pool_recycle: 连接回收时间（秒），防止数据库断开空闲连接
- pool_pre_ping: 每次获取连接前检测连接是否有效
"""

import re
from pathlib import Path
from typing import Any, Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from webix.core.config import Settings
from webix.core.logging import get_logger

logger = get_logger(__name__)

# (url, settings, create_missing) -> AsyncEngine
DatabaseOpener = Callable[[URL, Settings, bool], Awaitable[AsyncEngine]]

_SAFE_DATABASE_NAME = re.compile(r"^[a-z0-9_-]+$")


def _is_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite"


def _is_memory_sqlite(url: URL) -> bool:
    return _is_sqlite(url) and url.database in (None, "", ":memory:")


def build_tenant_database_url(base_url: str | URL, database_name: str) -> URL:
    """
    基于控制面 URL 派生租户库 URL

    - PostgreSQL 等：替换 URL 中的库名
    - SQLite：在控制面文件同目录下使用 <database_name>.db
    """
    url = make_url(base_url) if isinstance(base_url, str) else base_url

    if _is_sqlite(url):
        if _is_memory_sqlite(url):
            return url
        path = Path(url.database)
        return url.set(database=str(path.with_name(f"{database_name}.db")))

    return url.set(database=database_name)


def mask_url(url: str | URL) -> str:
    """隐藏密码，用于日志"""
    url = make_url(url) if isinstance(url, str) else url
    return url.render_as_string(hide_password=True)


def _get_pool_config(url: URL, settings: Settings) -> dict[str, Any]:
    """
    获取连接池配置

    - test 环境 / SQLite 文件库：NullPool
    - SQLite 内存库：StaticPool（所有会话共享同一连接）
    - 其他：AsyncAdaptedQueuePool
    """
    if _is_memory_sqlite(url):
        return {"poolclass": StaticPool}

    if settings.ENV == "test" or _is_sqlite(url):
        return {"poolclass": NullPool}

    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
    }


def build_engine(url: URL, settings: Settings) -> AsyncEngine:
    """创建异步引擎（带连接池）"""
    return create_async_engine(
        url,
        echo=settings.DEBUG and settings.LOG_LEVEL.upper() == "DEBUG",
        pool_pre_ping=True,
        **_get_pool_config(url, settings),
    )


async def ensure_postgres_database(url: URL, database_name: str) -> bool:
    """
    PostgreSQL 下按需创建租户库

    连接服务器维护库 postgres 执行 CREATE DATABASE（需 AUTOCOMMIT）

    Returns:
        是否新建了数据库
    """
    if not _SAFE_DATABASE_NAME.match(database_name):
        raise ValueError(f"Unsafe database name: {database_name}")

    maintenance_engine = create_async_engine(
        url.set(database="postgres"),
        isolation_level="AUTOCOMMIT",
        poolclass=NullPool,
    )
    try:
        async with maintenance_engine.connect() as conn:
            exists = await conn.scalar(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            )
            if exists:
                return False
            await conn.execute(text(f'CREATE DATABASE "{database_name}"'))
            logger.info("tenant_database_created", database=database_name)
            return True
    finally:
        await maintenance_engine.dispose()


async def open_database(
    url: URL,
    settings: Settings,
    create_missing: bool = False,
) -> AsyncEngine:
    """
    打开一个逻辑库并验证可用

    引擎创建后执行 SELECT 1；失败（含取消）时释放引擎再抛出，
    调用方拿到的一定是可用的引擎
    """
    if create_missing and url.get_backend_name() == "postgresql":
        await ensure_postgres_database(url, url.database)

    engine = build_engine(url, settings)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except BaseException:
        await engine.dispose()
        raise

    return engine
