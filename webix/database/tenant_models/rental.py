"""
租借记录模型（租户库）

end_date = start_date + rental_period 天
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from webix.core.security import as_utc
from webix.database.base import StringUUIDPrimaryKeyMixin, TenantBase, TimestampMixin, utcnow


class RentalStatus:
    """租借状态常量"""
    ACTIVE = "active"
    EXPIRED = "expired"
    RETURNED = "returned"
    CANCELLED = "cancelled"

    ALL = (ACTIVE, EXPIRED, RETURNED, CANCELLED)


class PaymentStatus:
    """支付状态常量"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, PAID, FAILED, REFUNDED)


PAYMENT_METHODS = ("credit_card", "paypal", "wallet", "free")

DEFAULT_RENTAL_PERIOD_DAYS = 7


class TenantRental(TenantBase, StringUUIDPrimaryKeyMixin, TimestampMixin):
    """租借记录实体"""

    __tablename__ = "rentals"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 目录条目（作品）ID，目录本身不在本服务范围内
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # [{"chapter_number": 1, "rented_at": "..."}]
    chapters: Mapped[List[dict]] = mapped_column(JSON, default=list, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=RentalStatus.ACTIVE, index=True, nullable=False
    )
    rental_period: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_RENTAL_PERIOD_DAYS, nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False, index=True)
    actual_return_date: Mapped[Optional[datetime]] = mapped_column()

    # 支付
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING, index=True, nullable=False
    )
    payment_method: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100))

    # 逾期
    late_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    is_late: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(String(500))

    def __repr__(self) -> str:
        return f"<TenantRental(id={self.id}, user={self.user_id}, status={self.status})>"

    def get_days_remaining(self, now: Optional[datetime] = None) -> int:
        """剩余天数（向上取整），非 active 状态为 0"""
        if self.status != RentalStatus.ACTIVE:
            return 0
        now = now or datetime.now(timezone.utc)
        seconds = (as_utc(self.end_date) - now).total_seconds()
        return math.ceil(seconds / 86400)

    def is_overdue_at(self, now: Optional[datetime] = None) -> bool:
        if self.status != RentalStatus.ACTIVE:
            return False
        return (now or datetime.now(timezone.utc)) > as_utc(self.end_date)
