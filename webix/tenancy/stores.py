"""
租户数据访问对象

UserStore / RentalStore 是接口，SqlUserStore / SqlRentalStore 是绑定到某个租户连接的实现。
每次调用各自开启会话，返回的实体已脱离会话、属性已加载完毕。
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from webix.core.logging import get_logger
from webix.core.security import as_utc, get_password_hash, next_lockout_state
from webix.database.tenant_models import (
    DEFAULT_RENTAL_PERIOD_DAYS,
    RentalStatus,
    TenantRental,
    TenantUser,
    TenantUserRole,
    TenantUserStatus,
)

if TYPE_CHECKING:
    from webix.tenancy.registry import DatabaseConnection

logger = get_logger(__name__)


class StoreError(Exception):
    """租户数据访问错误基类"""


class DuplicateUserError(StoreError):
    """用户名或邮箱已被占用"""

    def __init__(self, field: str, value: str):
        super().__init__(f"User with this {field} already exists")
        self.field = field
        self.value = value


class RentalNotFoundError(StoreError):
    """租借记录不存在"""


class InvalidRentalStateError(StoreError):
    """租借记录当前状态不允许该操作"""


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def calculate_late_fee(
    end_date: datetime,
    now: datetime,
    late_fee_per_day: Any = 0,
    grace_period_days: int = 0,
) -> Decimal:
    """
    计算逾期费

    宽限期之后每开始一天计一天费用
    """
    overdue = now - (as_utc(end_date) + timedelta(days=grace_period_days or 0))
    if overdue.total_seconds() <= 0:
        return Decimal("0")
    days = math.ceil(overdue.total_seconds() / 86400)
    return (_as_decimal(late_fee_per_day) * days).quantize(Decimal("0.01"))


# ============================================================
# 接口
# ============================================================


class UserStore(ABC):
    """租户用户数据访问接口"""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[TenantUser]:
        ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[TenantUser]:
        """不存在返回 None，不抛异常"""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[TenantUser]:
        ...

    @abstractmethod
    async def list_users(
        self,
        offset: int = 0,
        limit: int = 20,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[list[TenantUser], int]:
        ...

    @abstractmethod
    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = TenantUserRole.USER,
        permissions: Optional[Iterable[str]] = None,
        status: str = TenantUserStatus.ACTIVE,
    ) -> TenantUser:
        ...

    @abstractmethod
    async def record_failed_login(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[TenantUser]:
        ...

    @abstractmethod
    async def record_successful_login(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[TenantUser]:
        ...


class RentalStore(ABC):
    """租借记录数据访问接口"""

    @abstractmethod
    async def create_rental(
        self,
        user_id: str,
        item_id: str,
        rental_period: int = DEFAULT_RENTAL_PERIOD_DAYS,
        start_date: Optional[datetime] = None,
        total_cost: Any = 0,
        payment_method: str = "free",
        chapters: Optional[Iterable[int]] = None,
        notes: Optional[str] = None,
    ) -> TenantRental:
        ...

    @abstractmethod
    async def get_rental(self, rental_id: str) -> Optional[TenantRental]:
        ...

    @abstractmethod
    async def list_rentals(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[TenantRental], int]:
        ...

    @abstractmethod
    async def list_active_by_user(self, user_id: str) -> list[TenantRental]:
        ...

    @abstractmethod
    async def list_by_item(self, item_id: str) -> list[TenantRental]:
        ...

    @abstractmethod
    async def list_expired(self, now: Optional[datetime] = None) -> list[TenantRental]:
        ...

    @abstractmethod
    async def return_rental(
        self,
        rental_id: str,
        now: Optional[datetime] = None,
        late_fee_per_day: Any = 0,
        grace_period_days: int = 0,
    ) -> TenantRental:
        ...

    @abstractmethod
    async def cancel_rental(self, rental_id: str) -> TenantRental:
        ...

    @abstractmethod
    async def mark_overdue(
        self,
        now: Optional[datetime] = None,
        late_fee_per_day: Any = 0,
        grace_period_days: int = 0,
    ) -> int:
        ...


# ============================================================
# SQLAlchemy 实现
# ============================================================


class SqlUserStore(UserStore):
    """绑定到单个租户连接的用户数据访问对象"""

    def __init__(self, connection: "DatabaseConnection"):
        self.connection = connection

    async def get_by_id(self, user_id: str) -> Optional[TenantUser]:
        async with self.connection.session() as session:
            return await session.get(TenantUser, user_id)

    async def get_by_username(self, username: str) -> Optional[TenantUser]:
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantUser).where(TenantUser.username == username.strip().lower())
            )
            return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[TenantUser]:
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantUser).where(TenantUser.email == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def list_users(
        self,
        offset: int = 0,
        limit: int = 20,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[list[TenantUser], int]:
        query = select(TenantUser)
        if role:
            query = query.where(TenantUser.role == role)
        if status:
            query = query.where(TenantUser.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(TenantUser.username).like(pattern),
                    func.lower(TenantUser.email).like(pattern),
                    func.lower(TenantUser.first_name).like(pattern),
                    func.lower(TenantUser.last_name).like(pattern),
                )
            )

        async with self.connection.session() as session:
            total = await session.scalar(select(func.count()).select_from(query.subquery()))
            result = await session.execute(
                query.order_by(TenantUser.created_at.desc()).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = TenantUserRole.USER,
        permissions: Optional[Iterable[str]] = None,
        status: str = TenantUserStatus.ACTIVE,
    ) -> TenantUser:
        """
        创建租户用户

        Raises:
            DuplicateUserError: 用户名或邮箱已存在
        """
        username = username.strip().lower()
        email = email.strip().lower()

        if await self.get_by_username(username):
            raise DuplicateUserError("username", username)
        if await self.get_by_email(email):
            raise DuplicateUserError("email", email)

        user = TenantUser(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            hashed_password=get_password_hash(password),
            role=role,
            permissions=list(permissions or []),
            status=status,
        )

        async with self.connection.session() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                # 并发注册撞上唯一约束
                await session.rollback()
                raise DuplicateUserError("username", username) from e

        logger.info(
            "tenant_user_created",
            tenant_key=self.connection.tenant_key,
            user_id=user.id,
            role=role,
        )
        return user

    async def record_failed_login(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[TenantUser]:
        """登录失败计数，达到上限后锁定"""
        async with self.connection.session() as session:
            user = await session.get(TenantUser, user_id)
            if user is None:
                return None
            user.login_attempts, user.lock_until = next_lockout_state(
                user.login_attempts, user.lock_until, _now(now)
            )
            await session.commit()

        if user.lock_until is not None:
            logger.warning(
                "tenant_user_locked",
                tenant_key=self.connection.tenant_key,
                user_id=user.id,
                login_attempts=user.login_attempts,
            )
        return user

    async def record_successful_login(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[TenantUser]:
        """重置失败计数并记录登录时间"""
        async with self.connection.session() as session:
            user = await session.get(TenantUser, user_id)
            if user is None:
                return None
            user.login_attempts = 0
            user.lock_until = None
            user.last_login_at = _now(now)
            await session.commit()
        return user


class SqlRentalStore(RentalStore):
    """绑定到单个租户连接的租借记录数据访问对象"""

    def __init__(self, connection: "DatabaseConnection"):
        self.connection = connection

    async def create_rental(
        self,
        user_id: str,
        item_id: str,
        rental_period: int = DEFAULT_RENTAL_PERIOD_DAYS,
        start_date: Optional[datetime] = None,
        total_cost: Any = 0,
        payment_method: str = "free",
        chapters: Optional[Iterable[int]] = None,
        notes: Optional[str] = None,
    ) -> TenantRental:
        """创建租借记录，end_date = start_date + rental_period 天"""
        if rental_period < 1:
            raise ValueError("rental_period must be at least 1 day")

        start = _now(start_date)
        rental = TenantRental(
            user_id=user_id,
            item_id=item_id,
            chapters=[
                {"chapter_number": number, "rented_at": start.isoformat()}
                for number in (chapters or [])
            ],
            rental_period=rental_period,
            start_date=start,
            end_date=start + timedelta(days=rental_period),
            total_cost=_as_decimal(total_cost),
            payment_method=payment_method,
            notes=notes,
        )

        async with self.connection.session() as session:
            session.add(rental)
            await session.commit()

        logger.info(
            "rental_created",
            tenant_key=self.connection.tenant_key,
            rental_id=rental.id,
            user_id=user_id,
            item_id=item_id,
        )
        return rental

    async def get_rental(self, rental_id: str) -> Optional[TenantRental]:
        async with self.connection.session() as session:
            return await session.get(TenantRental, rental_id)

    async def list_rentals(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[TenantRental], int]:
        query = select(TenantRental)
        if user_id:
            query = query.where(TenantRental.user_id == user_id)
        if status:
            query = query.where(TenantRental.status == status)

        async with self.connection.session() as session:
            total = await session.scalar(select(func.count()).select_from(query.subquery()))
            result = await session.execute(
                query.order_by(TenantRental.start_date.desc()).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def list_active_by_user(self, user_id: str) -> list[TenantRental]:
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantRental)
                .where(
                    TenantRental.user_id == user_id,
                    TenantRental.status == RentalStatus.ACTIVE,
                )
                .order_by(TenantRental.end_date)
            )
            return list(result.scalars().all())

    async def list_by_item(self, item_id: str) -> list[TenantRental]:
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantRental)
                .where(TenantRental.item_id == item_id)
                .order_by(TenantRental.start_date.desc())
            )
            return list(result.scalars().all())

    async def list_expired(self, now: Optional[datetime] = None) -> list[TenantRental]:
        """仍为 active 但已过 end_date 的记录"""
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantRental)
                .where(
                    TenantRental.status == RentalStatus.ACTIVE,
                    TenantRental.end_date < _now(now),
                )
                .order_by(TenantRental.end_date)
            )
            return list(result.scalars().all())

    async def return_rental(
        self,
        rental_id: str,
        now: Optional[datetime] = None,
        late_fee_per_day: Any = 0,
        grace_period_days: int = 0,
    ) -> TenantRental:
        """
        归还

        active / expired 状态可归还；超过 end_date + 宽限期按天计逾期费

        Raises:
            RentalNotFoundError: 记录不存在
            InvalidRentalStateError: 已归还或已取消
        """
        now = _now(now)
        async with self.connection.session() as session:
            rental = await session.get(TenantRental, rental_id)
            if rental is None:
                raise RentalNotFoundError(f"Rental {rental_id} not found")
            if rental.status not in (RentalStatus.ACTIVE, RentalStatus.EXPIRED):
                raise InvalidRentalStateError(f"Rental is already {rental.status}")

            rental.actual_return_date = now
            rental.is_late = now > as_utc(rental.end_date)
            rental.late_fee = calculate_late_fee(
                rental.end_date, now, late_fee_per_day, grace_period_days
            )
            rental.status = RentalStatus.RETURNED
            await session.commit()

        logger.info(
            "rental_returned",
            tenant_key=self.connection.tenant_key,
            rental_id=rental_id,
            is_late=rental.is_late,
            late_fee=str(rental.late_fee),
        )
        return rental

    async def cancel_rental(self, rental_id: str) -> TenantRental:
        """
        取消，仅 active 状态可取消

        Raises:
            RentalNotFoundError: 记录不存在
            InvalidRentalStateError: 非 active 状态
        """
        async with self.connection.session() as session:
            rental = await session.get(TenantRental, rental_id)
            if rental is None:
                raise RentalNotFoundError(f"Rental {rental_id} not found")
            if rental.status != RentalStatus.ACTIVE:
                raise InvalidRentalStateError(f"Rental is already {rental.status}")

            rental.status = RentalStatus.CANCELLED
            await session.commit()

        logger.info(
            "rental_cancelled",
            tenant_key=self.connection.tenant_key,
            rental_id=rental_id,
        )
        return rental

    async def mark_overdue(
        self,
        now: Optional[datetime] = None,
        late_fee_per_day: Any = 0,
        grace_period_days: int = 0,
    ) -> int:
        """
        批量处理逾期：active 且已过期的记录置为 expired 并累计逾期费

        Returns:
            处理的记录数
        """
        now = _now(now)
        async with self.connection.session() as session:
            result = await session.execute(
                select(TenantRental).where(
                    TenantRental.status == RentalStatus.ACTIVE,
                    TenantRental.end_date < now,
                )
            )
            rentals = list(result.scalars().all())
            for rental in rentals:
                rental.status = RentalStatus.EXPIRED
                rental.is_late = True
                rental.late_fee = calculate_late_fee(
                    rental.end_date, now, late_fee_per_day, grace_period_days
                )
            await session.commit()

        if rentals:
            logger.info(
                "rentals_marked_overdue",
                tenant_key=self.connection.tenant_key,
                count=len(rentals),
            )
        return len(rentals)
