"""
多租户路由层错误

所有错误都携带 code 与 status_code，由 main.py 的异常处理器映射为 HTTP 响应
"""

from typing import Optional


class TenancyError(Exception):
    """多租户路由层错误基类"""

    code = "tenancy_error"
    status_code = 500

    def __init__(self, message: str, tenant_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tenant_key = tenant_key

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class InvalidTenantKeyFormat(TenancyError):
    """租户标识不符合格式要求"""

    code = "invalid_tenant_key"
    status_code = 400


class TenantKeyMissing(TenancyError):
    """路径、查询参数、请求头、请求体均未提供租户标识"""

    code = "tenant_key_missing"
    status_code = 400


class TenantKeyConflict(TenancyError):
    """多个来源给出的租户标识不一致"""

    code = "tenant_key_conflict"
    status_code = 400

    def __init__(self, message: str, sources: dict[str, str]):
        super().__init__(message)
        self.sources = sources


class TenantNotRegistered(TenancyError):
    """控制面中不存在可用的组织"""

    code = "tenant_not_registered"
    status_code = 404


class TenantConnectionError(TenancyError, ConnectionError):
    """打开租户（或控制面）数据库失败"""

    code = "tenant_connection_failed"
    status_code = 503


class NoConnectionError(TenancyError):
    """绑定模型时该租户尚未建立连接（调用顺序错误）"""

    code = "tenant_not_connected"
    status_code = 500
