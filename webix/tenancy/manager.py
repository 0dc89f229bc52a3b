"""
多租户运行时

进程级状态对象：持有连接注册表与模型绑定器，在应用 lifespan 中创建和销毁，
通过 app.state.tenancy 传给每个请求。
"""

from typing import Optional

from webix.core.config import Settings
from webix.core.logging import get_logger
from webix.database.engine import DatabaseOpener
from webix.database.models import create_control_plane_schema
from webix.tenancy.binder import TenantModelBinder, TenantModelSet
from webix.tenancy.registry import ConnectionRegistry, DatabaseConnection

logger = get_logger(__name__)


class TenancyManager:
    """多租户运行时"""

    def __init__(self, settings: Settings, opener: Optional[DatabaseOpener] = None):
        self.settings = settings
        self.registry = ConnectionRegistry(settings, opener=opener)
        self.binder = TenantModelBinder(self.registry)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def control_plane(self) -> DatabaseConnection:
        return self.registry.default_connection

    async def start(self) -> None:
        """
        建立控制面连接

        失败直接抛出，应用不应继续启动
        """
        connection = await self.registry.ensure_default_connection()
        if self.settings.CONTROL_PLANE_AUTO_CREATE_TABLES:
            await create_control_plane_schema(connection.engine)
            logger.info("control_plane_schema_ready")
        self._started = True

    async def shutdown(self) -> None:
        await self.registry.close_all()
        self.binder.invalidate_all()
        self._started = False
        logger.info("tenancy_shutdown")

    async def open_tenant(self, tenant_key: str) -> TenantModelSet:
        """建连并绑定，供脚本与后台任务使用"""
        await self.registry.ensure_tenant_connection(tenant_key)
        return self.binder.get_models(tenant_key)

    async def close_tenant(self, tenant_key: str) -> bool:
        return await self.registry.close_tenant_connection(tenant_key)
