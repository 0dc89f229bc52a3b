"""
租户标识解析

按优先级依次检查：
1. 路径中紧跟 TENANT_PATH_PREFIX 的一段（/api/tenant/<key>/...）
2. 查询参数 TENANT_QUERY_PARAM
3. 请求头 TENANT_HEADER
4. 请求体字段 TENANT_BODY_FIELD

只负责提取，不做规范化；规范化由 normalize_tenant_key 显式完成。
多个来源给出不同的值时，按 TENANT_REJECT_CONFLICTING_KEYS 拒绝或以高优先级为准。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import unquote

from starlette.requests import Request

from webix.core.config import Settings
from webix.core.logging import get_logger
from webix.tenancy.errors import TenantKeyConflict

logger = get_logger(__name__)


class TenantKeySource:
    """租户标识来源（按优先级排列）"""
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    BODY = "body"

    ORDER = (PATH, QUERY, HEADER, BODY)


@dataclass(frozen=True)
class InboundRequest:
    """
    与 Web 框架无关的入站请求抽象

    headers 的键统一为小写
    """

    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def key_from_path(path: str, prefix: str) -> Optional[str]:
    """取路径中紧跟前缀的那一段"""
    prefix_parts = [part for part in prefix.split("/") if part]
    path_parts = [part for part in path.split("/") if part]

    n = len(prefix_parts)
    if len(path_parts) <= n or path_parts[:n] != prefix_parts:
        return None
    return _clean(unquote(path_parts[n]))


def collect_tenant_key_candidates(
    request: InboundRequest, settings: Settings
) -> list[tuple[str, str]]:
    """按优先级收集所有非空来源，返回 [(source, raw_value), ...]"""
    candidates: list[tuple[str, str]] = []

    value = key_from_path(request.path, settings.TENANT_PATH_PREFIX)
    if value:
        candidates.append((TenantKeySource.PATH, value))

    value = _clean(request.query.get(settings.TENANT_QUERY_PARAM))
    if value:
        candidates.append((TenantKeySource.QUERY, value))

    value = _clean(request.header(settings.TENANT_HEADER))
    if value:
        candidates.append((TenantKeySource.HEADER, value))

    if isinstance(request.body, Mapping):
        value = _clean(request.body.get(settings.TENANT_BODY_FIELD))
        if value:
            candidates.append((TenantKeySource.BODY, value))

    return candidates


def resolve_tenant_key(request: InboundRequest, settings: Settings) -> Optional[str]:
    """
    解析租户标识

    Returns:
        优先级最高的非空原始值；四个来源都没有时返回 None

    Raises:
        TenantKeyConflict: 来源之间不一致且配置为拒绝
    """
    candidates = collect_tenant_key_candidates(request, settings)
    if not candidates:
        return None

    source, value = candidates[0]
    distinct = {raw.lower() for _, raw in candidates}
    if len(distinct) > 1:
        sources = dict(candidates)
        if settings.TENANT_REJECT_CONFLICTING_KEYS:
            logger.info("tenant_key_conflict_rejected", sources=sources)
            raise TenantKeyConflict(
                "Conflicting subdomain values in request: "
                + ", ".join(f"{src}={raw}" for src, raw in candidates),
                sources=sources,
            )
        logger.warning("tenant_key_conflict", chosen=source, sources=sources)

    return value


async def inbound_request_from_starlette(request: Request) -> InboundRequest:
    """从 Starlette 请求构建 InboundRequest；仅解析 JSON 请求体"""
    body: Any = None
    content_type = request.headers.get("content-type", "")
    if request.method not in ("GET", "HEAD", "OPTIONS") and "json" in content_type:
        raw = await request.body()
        if raw:
            try:
                body = json.loads(raw)
            except ValueError:
                # 非法 JSON 交给路由层的请求体校验处理
                body = None

    return InboundRequest(
        path=request.url.path,
        query=dict(request.query_params),
        headers={name.lower(): value for name, value in request.headers.items()},
        body=body,
    )
