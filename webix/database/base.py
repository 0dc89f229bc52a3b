"""
SQLAlchemy 基础模型与混入类

提供：
- Base: 控制面声明式基类（组织、平台管理员、组织用户）
- TenantBase: 租户库声明式基类（租户用户、租借记录）
- TimestampMixin: 时间戳字段
- SoftDeleteMixin: 软删除字段
- StringUUIDPrimaryKeyMixin: 字符串 UUID 主键

两套 metadata 互不相交：控制面表永远不会被建到租户库里，反之亦然
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    控制面声明式基类

    控制面模型都应继承此类
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TenantBase(DeclarativeBase):
    """
    租户库声明式基类

    绑定到每个租户各自的连接，表结构在租户库首次打开时创建
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


def generate_uuid() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StringUUIDPrimaryKeyMixin:
    """
    UUID 主键混入类

    以字符串存储，PostgreSQL 与 SQLite 通用
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )


class TimestampMixin:
    """
    时间戳混入类

    提供 created_at 和 updated_at 字段

    Python 侧赋值，异步会话提交后无需再回库读取
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class SoftDeleteMixin:
    """
    软删除混入类

    提供 deleted_at 字段和 is_deleted 属性
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
