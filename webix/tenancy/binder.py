"""
租户模型绑定器

为每个 TenantKey 构建并缓存一组绑定到该租户连接的数据访问对象。

- 只查找连接，从不建立连接：没有连接时抛出 NoConnectionError
- 缓存的模型集若不是绑定在注册表当前的连接上，立即重新绑定
- 注册表关闭连接时同步回调 invalidate，已关闭连接上的模型集不会再被返回
- 缓存只在事件循环内读写，各操作中间没有 await
"""

from dataclasses import dataclass
from typing import Callable, Optional

from prometheus_client import Counter

from webix.core.logging import get_logger
from webix.tenancy.errors import NoConnectionError
from webix.tenancy.keys import normalize_tenant_key
from webix.tenancy.registry import ConnectionRegistry, DatabaseConnection
from webix.tenancy.stores import RentalStore, SqlRentalStore, SqlUserStore, UserStore

logger = get_logger(__name__)

TENANT_MODEL_BINDINGS_TOTAL = Counter(
    "tenant_model_bindings_total",
    "Tenant model sets built and cached",
)


@dataclass(frozen=True)
class TenantModelSet:
    """
    一个租户的数据访问对象集合

    也支持按实体名取用：model_set["User"]、model_set["Rental"]
    """

    tenant_key: str
    connection: DatabaseConnection
    users: UserStore
    rentals: RentalStore

    _ENTITY_FIELDS = {"User": "users", "Rental": "rentals"}

    def __getitem__(self, entity: str):
        try:
            return getattr(self, self._ENTITY_FIELDS[entity])
        except KeyError:
            raise KeyError(f"Unknown tenant entity: {entity}") from None

    def names(self) -> list[str]:
        return list(self._ENTITY_FIELDS)


ModelSetFactory = Callable[[str, DatabaseConnection], TenantModelSet]


def build_model_set(tenant_key: str, connection: DatabaseConnection) -> TenantModelSet:
    """把 User / Rental 数据访问对象绑定到连接"""
    return TenantModelSet(
        tenant_key=tenant_key,
        connection=connection,
        users=SqlUserStore(connection),
        rentals=SqlRentalStore(connection),
    )


class TenantModelBinder:
    """
    租户模型绑定器

    Args:
        registry: 连接注册表，构造时注册关闭回调
        factory: 模型集构造函数，默认 build_model_set
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        factory: Optional[ModelSetFactory] = None,
    ):
        self._registry = registry
        self._factory = factory or build_model_set
        self._cache: dict[str, TenantModelSet] = {}
        registry.add_close_listener(self.invalidate)

    def get_models(self, tenant_key: str) -> TenantModelSet:
        """
        获取租户模型集

        Raises:
            InvalidTenantKeyFormat: 租户标识不合法
            NoConnectionError: 该租户尚未建立连接
        """
        key = normalize_tenant_key(tenant_key)

        connection = self._registry.get_tenant_connection(key)
        if connection is None:
            raise NoConnectionError(
                f"No database connection found for organization: {key}",
                tenant_key=key,
            )

        cached = self._cache.get(key)
        if cached is not None and cached.connection is connection:
            return cached

        models = self._factory(key, connection)
        self._cache[key] = models

        TENANT_MODEL_BINDINGS_TOTAL.inc()
        logger.debug("tenant_models_bound", tenant_key=key, serial=connection.serial)
        return models

    def get_cached(self, tenant_key: str) -> Optional[TenantModelSet]:
        return self._cache.get(normalize_tenant_key(tenant_key))

    def invalidate(self, tenant_key: str) -> None:
        """摘除该租户的缓存模型集"""
        key = normalize_tenant_key(tenant_key)
        removed = self._cache.pop(key, None)
        if removed is not None:
            logger.debug("tenant_models_invalidated", tenant_key=key)

    def invalidate_all(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
