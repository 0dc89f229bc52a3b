"""
中间件模块
"""

from webix.middleware.metrics import (
    TENANT_REQUEST_ERRORS_TOTAL,
    MetricsMiddleware,
    metrics_endpoint,
)
from webix.middleware.request_context import RequestContextMiddleware

__all__ = [
    "MetricsMiddleware",
    "metrics_endpoint",
    "RequestContextMiddleware",
    "TENANT_REQUEST_ERRORS_TOTAL",
]
