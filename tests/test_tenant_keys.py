"""
租户标识规范化测试
"""

import pytest

from webix.tenancy.errors import InvalidTenantKeyFormat
from webix.tenancy.keys import is_valid_tenant_key, normalize_tenant_key, tenant_database_name


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("acme", "acme"),
        ("ACME", "acme"),
        ("  Acme-Books ", "acme-books"),
        ("a1b", "a1b"),
        ("x" * 30, "x" * 30),
    ],
)
def test_normalize_accepts_valid_keys(raw, expected):
    assert normalize_tenant_key(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   ",
        "ab",
        "x" * 31,
        "-acme",
        "acme-",
        "ac_me",
        "ac.me",
        "acme books",
        None,
        42,
    ],
)
def test_normalize_rejects_invalid_keys(raw):
    with pytest.raises(InvalidTenantKeyFormat):
        normalize_tenant_key(raw)


def test_invalid_key_error_maps_to_bad_request():
    with pytest.raises(InvalidTenantKeyFormat) as exc_info:
        normalize_tenant_key("no_underscores")

    assert exc_info.value.status_code == 400
    assert exc_info.value.to_dict()["code"] == "invalid_tenant_key"


def test_is_valid_tenant_key():
    assert is_valid_tenant_key("Globex")
    assert not is_valid_tenant_key("g")


def test_tenant_database_name_uses_prefix():
    assert tenant_database_name("acme", "webix") == "webix_acme"
