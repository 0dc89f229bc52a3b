"""
Prometheus 指标中间件

采集 HTTP 请求指标与多租户请求失败数；租户连接与模型绑定指标定义在
webix.tenancy 中，同一个 /metrics 端点一并导出
"""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from webix.core.config import settings

# 不采集的路径
SKIP_PATHS = {"/metrics", "/health"}


# ============================================================
# HTTP 请求指标
# ============================================================

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method"],
)


# ============================================================
# 多租户请求指标
# ============================================================

TENANT_REQUEST_ERRORS_TOTAL = Counter(
    "tenant_request_errors_total",
    "Requests rejected by the tenant routing layer",
    ["code"],  # invalid_tenant_key | tenant_key_missing | tenant_not_registered | ...
)


def normalize_path(path: str) -> str:
    """
    规范化路径，将动态参数替换为占位符，避免标签基数随租户数增长

    例如:
        /api/organizations/<uuid> -> /api/organizations/{id}
        /api/tenant/acme/rentals  -> /api/tenant/{subdomain}/rentals
    """
    tenant_prefix = [part for part in settings.TENANT_PATH_PREFIX.split("/") if part]
    parts = [part for part in path.split("/") if part]
    at_tenant = len(tenant_prefix) if parts[: len(tenant_prefix)] == tenant_prefix else -1

    normalized = []
    for index, part in enumerate(parts):
        if index == at_tenant:
            normalized.append("{subdomain}")
        elif len(part) == 36 and part.count("-") == 4:
            normalized.append("{id}")
        elif part.isdigit():
            normalized.append("{id}")
        else:
            normalized.append(part)

    return "/" + "/".join(normalized)


# ============================================================
# 中间件
# ============================================================

class MetricsMiddleware(BaseHTTPMiddleware):
    """Prometheus 指标采集中间件"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        method = request.method
        path = normalize_path(request.url.path)

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_code=status_code).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(
                time.perf_counter() - start_time
            )
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method).dec()

        return response


# ============================================================
# Metrics 端点
# ============================================================

async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics 端点"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
