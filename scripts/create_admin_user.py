#!/usr/bin/env python3
"""
创建平台管理员脚本

用法：
    # 使用环境变量
    ADMIN_USERNAME=admin ADMIN_PASSWORD=secret123 python scripts/create_admin_user.py

    # 使用命令行参数
    python scripts/create_admin_user.py --username admin --password secret123 --email admin@webix.com

    # 已存在时更新密码
    python scripts/create_admin_user.py -u admin -p newsecret --update
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import or_, select
from sqlalchemy.engine import make_url

from webix.core.config import settings
from webix.core.security import get_password_hash
from webix.database.engine import mask_url
from webix.database.models import Admin, AdminRole, create_control_plane_schema
from webix.tenancy.registry import ConnectionRegistry


async def create_admin_user(
    username: str,
    password: str,
    email: str,
    update: bool = False,
    create_tables: bool = False,
) -> None:
    """创建（或更新）平台管理员"""
    registry = ConnectionRegistry(settings)
    connection = await registry.ensure_default_connection()

    try:
        if create_tables:
            await create_control_plane_schema(connection.engine)

        async with connection.session() as session:
            # 检查管理员是否已存在
            result = await session.execute(
                select(Admin).where(or_(Admin.username == username, Admin.email == email))
            )
            existing = result.scalar_one_or_none()

            if existing:
                print(f"管理员 '{existing.username}' 已存在 (ID: {existing.id})")
                if update:
                    existing.hashed_password = get_password_hash(password)
                    existing.login_attempts = 0
                    existing.lock_until = None
                    existing.is_active = True
                    await session.commit()
                    print(f"管理员 '{existing.username}' 密码已更新并解除锁定")
                return

            admin = Admin(
                username=username,
                email=email,
                hashed_password=get_password_hash(password),
                role=AdminRole.SUPER_ADMIN,
                is_active=True,
            )
            session.add(admin)
            await session.commit()

            print("平台管理员创建成功:")
            print(f"  ID: {admin.id}")
            print(f"  Username: {admin.username}")
            print(f"  Email: {admin.email}")
            print(f"  Role: {admin.role}")
    finally:
        await registry.close_all()


def main():
    parser = argparse.ArgumentParser(description="创建平台管理员")
    parser.add_argument(
        "--username", "-u",
        default=os.environ.get("ADMIN_USERNAME", "admin"),
        help="用户名 (默认: admin 或 ADMIN_USERNAME 环境变量)",
    )
    parser.add_argument(
        "--password", "-p",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="密码 (必需，或设置 ADMIN_PASSWORD 环境变量)",
    )
    parser.add_argument(
        "--email", "-e",
        default=os.environ.get("ADMIN_EMAIL", "admin@webix.com"),
        help="邮箱",
    )
    parser.add_argument(
        "--update",
        action="store_true",
        help="已存在时更新密码",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="先在控制面库中建表（开发环境）",
    )

    args = parser.parse_args()

    if not args.password:
        print("错误: 必须提供密码 (--password 或 ADMIN_PASSWORD 环境变量)")
        sys.exit(1)

    if len(args.password) < 6:
        print("错误: 密码长度至少 6 位")
        sys.exit(1)

    print("正在创建平台管理员...")
    print(f"  数据库: {mask_url(make_url(settings.DATABASE_URL))}")

    asyncio.run(create_admin_user(
        username=args.username.strip().lower(),
        password=args.password,
        email=args.email.strip().lower(),
        update=args.update,
        create_tables=args.create_tables,
    ))


if __name__ == "__main__":
    main()
