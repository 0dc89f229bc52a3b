"""
租户标识（TenantKey）规范化

规则：
- 去除首尾空白并转小写后再校验
- 长度 3-30
- 仅允许小写字母、数字、连字符
- 不能以连字符开头或结尾
"""

import re
from typing import Any

from webix.tenancy.errors import InvalidTenantKeyFormat

TENANT_KEY_MIN_LENGTH = 3
TENANT_KEY_MAX_LENGTH = 30

_TENANT_KEY_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")


def normalize_tenant_key(raw: Any) -> str:
    """
    规范化并校验租户标识

    Args:
        raw: 原始租户标识（来自路径、查询参数、请求头或请求体）

    Returns:
        规范化后的 TenantKey

    Raises:
        InvalidTenantKeyFormat: 不满足格式要求
    """
    if not isinstance(raw, str):
        raise InvalidTenantKeyFormat("Subdomain must be a string")

    key = raw.strip().lower()

    if not key:
        raise InvalidTenantKeyFormat("Subdomain is required")

    if not TENANT_KEY_MIN_LENGTH <= len(key) <= TENANT_KEY_MAX_LENGTH:
        raise InvalidTenantKeyFormat(
            f"Subdomain must be between {TENANT_KEY_MIN_LENGTH} and "
            f"{TENANT_KEY_MAX_LENGTH} characters",
            tenant_key=key,
        )

    if not _TENANT_KEY_PATTERN.match(key):
        raise InvalidTenantKeyFormat(
            "Invalid subdomain format. Use only lowercase letters, numbers, and hyphens, "
            "and do not start or end with a hyphen",
            tenant_key=key,
        )

    return key


def is_valid_tenant_key(raw: Any) -> bool:
    try:
        normalize_tenant_key(raw)
    except InvalidTenantKeyFormat:
        return False
    return True


def tenant_database_name(tenant_key: str, prefix: str) -> str:
    """租户库命名：<prefix>_<TenantKey>"""
    return f"{prefix}_{tenant_key}"
