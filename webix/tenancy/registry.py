"""
连接注册表

持有唯一的控制面连接，以及 TenantKey -> 租户库连接 的映射：
- 首次引用某个租户时惰性建立连接，之后复用
- 每个 TenantKey 一把 asyncio.Lock，并发首次建立只会真正打开一次；
  锁按引用计数保留，无人持有或等待时即移除
- 打开失败不留任何条目，后续重试不受影响
- 关闭连接时先摘除条目，再同步通知监听者（模型绑定器失效缓存），最后释放引擎

连接的所有权属于进程，而非单个请求：请求取消不会关闭已缓存的连接
"""

import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from webix.core.config import Settings
from webix.core.logging import get_logger
from webix.database.engine import (
    DatabaseOpener,
    build_tenant_database_url,
    mask_url,
    open_database,
)
from webix.database.tenant_models import create_tenant_schema
from webix.tenancy.errors import NoConnectionError, TenancyError, TenantConnectionError
from webix.tenancy.keys import normalize_tenant_key, tenant_database_name

logger = get_logger(__name__)


# ============================================================
# 租户连接指标
# ============================================================

TENANT_CONNECTIONS_OPEN = Gauge(
    "tenant_connections_open",
    "Number of cached tenant database connections",
)

TENANT_CONNECTION_OPENS_TOTAL = Counter(
    "tenant_connection_opens_total",
    "Tenant database connection open attempts",
    ["result"],  # result: success | error
)

TENANT_CONNECTION_OPEN_SECONDS = Histogram(
    "tenant_connection_open_seconds",
    "Time spent opening a tenant database connection",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

TENANT_CONNECTION_CLOSES_TOTAL = Counter(
    "tenant_connection_closes_total",
    "Tenant database connections closed",
)


CloseListener = Callable[[str], None]


@dataclass(eq=False)
class DatabaseConnection:
    """
    一个逻辑库的连接句柄

    serial 在同一注册表内单调递增，关闭后重建的连接一定拿到新的 serial
    """

    engine: AsyncEngine
    database_name: str
    serial: int
    tenant_key: Optional[str] = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False
    session_factory: async_sessionmaker[AsyncSession] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    def session(self) -> AsyncSession:
        """新建一个会话，调用方负责关闭（async with）"""
        if self.closed:
            raise NoConnectionError(
                f"Connection to database {self.database_name} is closed",
                tenant_key=self.tenant_key,
            )
        return self.session_factory()

    async def dispose(self) -> None:
        self.closed = True
        await self.engine.dispose()

    def describe(self) -> dict:
        return {
            "tenant_key": self.tenant_key,
            "database": self.database_name,
            "serial": self.serial,
            "opened_at": self.opened_at.isoformat(),
        }


@dataclass(eq=False)
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ConnectionRegistry:
    """
    连接注册表

    Args:
        settings: 应用配置
        opener: 打开逻辑库的原语，默认 open_database；测试中可替换
    """

    def __init__(self, settings: Settings, opener: Optional[DatabaseOpener] = None):
        self._settings = settings
        self._opener: DatabaseOpener = opener or open_database
        self._base_url = make_url(settings.DATABASE_URL)

        self._default: Optional[DatabaseConnection] = None
        self._default_lock = asyncio.Lock()

        self._tenants: dict[str, DatabaseConnection] = {}
        self._locks: dict[str, _KeyLock] = {}
        self._close_listeners: list[CloseListener] = []
        self._serials = itertools.count(1)

    # ============================================================
    # 控制面连接
    # ============================================================

    async def ensure_default_connection(self) -> DatabaseConnection:
        """
        初始化控制面连接（幂等）

        Raises:
            TenantConnectionError: 打开失败，调用方应终止启动
        """
        if self._default is not None:
            return self._default

        async with self._default_lock:
            if self._default is not None:
                return self._default

            url = self._base_url
            try:
                engine = await self._opener(url, self._settings, False)
            except Exception as e:
                logger.error(
                    "control_plane_connection_failed",
                    url=mask_url(url),
                    error=str(e),
                )
                raise TenantConnectionError(
                    f"Failed to connect to control-plane database: {e}"
                ) from e

            self._default = DatabaseConnection(
                engine=engine,
                database_name=url.database or "",
                serial=next(self._serials),
            )
            logger.info(
                "control_plane_connected",
                url=mask_url(url),
                serial=self._default.serial,
            )
            return self._default

    def get_default_connection(self) -> Optional[DatabaseConnection]:
        return self._default

    @property
    def default_connection(self) -> DatabaseConnection:
        """控制面连接；未初始化时抛出 NoConnectionError"""
        if self._default is None:
            raise NoConnectionError("Control-plane connection is not initialized")
        return self._default

    # ============================================================
    # 租户连接
    # ============================================================

    def tenant_database_name(self, tenant_key: str) -> str:
        return tenant_database_name(tenant_key, self._settings.TENANT_DB_PREFIX)

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """持有 key 对应的锁；最后一个使用者离开时移除该锁"""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def ensure_tenant_connection(self, tenant_key: str) -> DatabaseConnection:
        """
        获取租户连接，不存在则建立

        同一 TenantKey（忽略大小写）始终返回同一个连接实例

        Raises:
            InvalidTenantKeyFormat: 租户标识不合法
            TenantConnectionError: 打开失败，注册表保持不变
        """
        key = normalize_tenant_key(tenant_key)

        connection = self._tenants.get(key)
        if connection is not None:
            return connection

        async with self._key_lock(key):
            # 等锁期间可能已被其他协程建立
            connection = self._tenants.get(key)
            if connection is not None:
                return connection

            connection = await self._open_tenant(key)
            self._tenants[key] = connection
            TENANT_CONNECTIONS_OPEN.set(len(self._tenants))
            return connection

    async def _open_tenant(self, key: str) -> DatabaseConnection:
        database_name = self.tenant_database_name(key)
        url = build_tenant_database_url(self._base_url, database_name)
        start = time.perf_counter()

        try:
            engine = await self._opener(url, self._settings, self._settings.TENANT_DB_AUTO_CREATE)
        except TenancyError:
            TENANT_CONNECTION_OPENS_TOTAL.labels(result="error").inc()
            raise
        except Exception as e:
            TENANT_CONNECTION_OPENS_TOTAL.labels(result="error").inc()
            logger.error(
                "tenant_connection_failed",
                tenant_key=key,
                database=database_name,
                error=str(e),
            )
            raise TenantConnectionError(
                f"Failed to connect to database for organization: {key}",
                tenant_key=key,
            ) from e

        if self._settings.TENANT_DB_AUTO_MIGRATE:
            try:
                await create_tenant_schema(engine)
            except Exception as e:
                await engine.dispose()
                TENANT_CONNECTION_OPENS_TOTAL.labels(result="error").inc()
                logger.error(
                    "tenant_schema_bootstrap_failed",
                    tenant_key=key,
                    database=database_name,
                    error=str(e),
                )
                raise TenantConnectionError(
                    f"Failed to prepare database for organization: {key}",
                    tenant_key=key,
                ) from e
            except BaseException:
                # 取消
                await engine.dispose()
                raise

        connection = DatabaseConnection(
            engine=engine,
            database_name=database_name,
            serial=next(self._serials),
            tenant_key=key,
        )

        TENANT_CONNECTION_OPENS_TOTAL.labels(result="success").inc()
        TENANT_CONNECTION_OPEN_SECONDS.observe(time.perf_counter() - start)
        logger.info(
            "tenant_connection_opened",
            tenant_key=key,
            database=database_name,
            serial=connection.serial,
        )
        return connection

    def get_tenant_connection(self, tenant_key: str) -> Optional[DatabaseConnection]:
        """
        纯查找，从不建立连接；未缓存返回 None

        Raises:
            InvalidTenantKeyFormat: 租户标识不合法（不会返回 None），
                需要容错的调用方应先校验
        """
        return self._tenants.get(normalize_tenant_key(tenant_key))

    async def close_tenant_connection(self, tenant_key: str) -> bool:
        """
        关闭并摘除租户连接，不存在时什么也不做

        Returns:
            是否确实关闭了一个连接
        """
        key = normalize_tenant_key(tenant_key)

        # 既未缓存也无人正在打开
        if key not in self._tenants and key not in self._locks:
            return False

        async with self._key_lock(key):
            connection = self._tenants.pop(key, None)
            if connection is None:
                return False

            TENANT_CONNECTIONS_OPEN.set(len(self._tenants))
            TENANT_CONNECTION_CLOSES_TOTAL.inc()
            try:
                self._notify_closed(key)
            finally:
                await connection.dispose()

        logger.info(
            "tenant_connection_closed",
            tenant_key=key,
            database=connection.database_name,
            serial=connection.serial,
        )
        return True

    async def close_all(self) -> None:
        """关闭全部租户连接及控制面连接，仅用于有序停机"""
        for key in list(self._tenants):
            await self.close_tenant_connection(key)

        async with self._default_lock:
            default, self._default = self._default, None
            if default is not None:
                await default.dispose()
                logger.info("control_plane_disconnected", serial=default.serial)

    # ============================================================
    # 监听与自省
    # ============================================================

    def add_close_listener(self, listener: CloseListener) -> None:
        """注册关闭回调，参数为被关闭的 TenantKey；回调必须是同步的"""
        self._close_listeners.append(listener)

    def _notify_closed(self, key: str) -> None:
        for listener in self._close_listeners:
            listener(key)

    def tenant_keys(self) -> list[str]:
        return sorted(self._tenants)

    def describe(self) -> list[dict]:
        return [self._tenants[key].describe() for key in self.tenant_keys()]

    def __len__(self) -> int:
        return len(self._tenants)
