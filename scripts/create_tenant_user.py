#!/usr/bin/env python3
"""
在租户库中创建用户

组织注册后租户库为空，用此脚本创建第一个拥有 manage_users 权限的租户用户，
之后即可通过 /api/tenant/{subdomain}/users 管理其他用户。

用法：
    python scripts/create_tenant_user.py --subdomain acme --username owner --email owner@acme.mn --password secret123
"""

import argparse
import asyncio
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from webix.core.config import settings
from webix.database.tenant_models import TenantUserPermission, TenantUserRole
from webix.tenancy.manager import TenancyManager
from webix.tenancy.stores import DuplicateUserError


async def create_tenant_user(
    subdomain: str,
    username: str,
    email: str,
    password: str,
    role: str,
) -> None:
    """创建租户用户（默认拥有全部权限）"""
    tenancy = TenancyManager(settings)
    await tenancy.start()

    try:
        models = await tenancy.open_tenant(subdomain)
        print(f"  租户库: {models.connection.database_name}")

        try:
            user = await models.users.create_user(
                username=username,
                email=email,
                password=password,
                role=role,
                permissions=list(TenantUserPermission.ALL),
            )
        except DuplicateUserError as e:
            print(f"错误: {e}")
            sys.exit(1)

        print("租户用户创建成功:")
        print(f"  ID: {user.id}")
        print(f"  Username: {user.username}")
        print(f"  Role: {user.role}")
    finally:
        await tenancy.shutdown()


def main():
    parser = argparse.ArgumentParser(description="在租户库中创建用户")
    parser.add_argument("--subdomain", "-s", required=True, help="组织子域名")
    parser.add_argument("--username", "-u", required=True, help="用户名")
    parser.add_argument("--email", "-e", required=True, help="邮箱")
    parser.add_argument("--password", "-p", required=True, help="密码")
    parser.add_argument(
        "--role", "-r",
        default=TenantUserRole.OWNER,
        choices=list(TenantUserRole.ALL),
        help="角色 (默认: owner)",
    )

    args = parser.parse_args()

    if len(args.password) < 6:
        print("错误: 密码长度至少 6 位")
        sys.exit(1)

    print(f"正在为组织 '{args.subdomain}' 创建租户用户...")

    asyncio.run(create_tenant_user(
        subdomain=args.subdomain,
        username=args.username,
        email=args.email,
        password=args.password,
        role=args.role,
    ))


if __name__ == "__main__":
    main()
