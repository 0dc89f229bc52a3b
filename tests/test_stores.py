"""
租户数据访问对象测试（用户、租借、登录锁定）
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import USER_PASSWORD, make_tenant_user
from webix.core.config import settings
from webix.database.tenant_models import RentalStatus, TenantUserRole
from webix.services.auth_service import (
    AccountInactiveError,
    AccountLockedError,
    InvalidCredentialsError,
    authenticate_tenant_user,
)
from webix.tenancy.stores import (
    DuplicateUserError,
    InvalidRentalStateError,
    RentalNotFoundError,
    calculate_late_fee,
)

START = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


# ============================================================
# 用户
# ============================================================


@pytest.mark.asyncio
async def test_create_and_lookup_user(acme):
    user = await acme.users.create_user(
        username="  Carol ",
        email="Carol@Acme.mn",
        password=USER_PASSWORD,
        first_name="Carol",
        last_name="Danvers",
    )

    assert user.username == "carol"
    assert user.email == "carol@acme.mn"
    assert user.hashed_password != USER_PASSWORD
    assert user.full_name == "Carol Danvers"
    assert user.role == TenantUserRole.USER

    assert (await acme.users.get_by_username("CAROL")).id == user.id
    assert (await acme.users.get_by_email("carol@acme.mn")).id == user.id
    assert (await acme.users.get_by_id(user.id)).username == "carol"
    assert await acme.users.get_by_username("nobody") is None


@pytest.mark.asyncio
async def test_duplicate_username_and_email(acme):
    await make_tenant_user(acme, "dave")

    with pytest.raises(DuplicateUserError) as exc_info:
        await acme.users.create_user(username="DAVE", email="other@acme.mn", password="x" * 8)
    assert exc_info.value.field == "username"

    with pytest.raises(DuplicateUserError) as exc_info:
        await acme.users.create_user(username="dave2", email="dave@acme.mn", password="x" * 8)
    assert exc_info.value.field == "email"


@pytest.mark.asyncio
async def test_users_are_isolated_per_tenant(tenancy, acme):
    globex = await tenancy.open_tenant("globex")
    await make_tenant_user(acme, "erin")

    assert await globex.users.get_by_username("erin") is None
    # 同名用户可以存在于不同租户
    await make_tenant_user(globex, "erin")
    assert (await globex.users.get_by_username("erin")).email == "erin@globex.mn"


@pytest.mark.asyncio
async def test_list_users_with_filters(acme):
    await make_tenant_user(acme, "frank")
    await make_tenant_user(acme, "grace", role=TenantUserRole.ADMIN)
    await make_tenant_user(acme, "heidi")

    users, total = await acme.users.list_users()
    assert total == 3

    admins, total = await acme.users.list_users(role=TenantUserRole.ADMIN)
    assert total == 1
    assert admins[0].username == "grace"

    found, total = await acme.users.list_users(search="HEI")
    assert [u.username for u in found] == ["heidi"]

    page, total = await acme.users.list_users(offset=1, limit=1)
    assert len(page) == 1
    assert total == 3


# ============================================================
# 登录与锁定
# ============================================================


@pytest.mark.asyncio
async def test_authenticate_tenant_user(acme, reader_user):
    user = await authenticate_tenant_user(acme.users, "BOB", USER_PASSWORD)

    assert user.id == reader_user.id
    assert user.last_login_at is not None
    assert user.login_attempts == 0


@pytest.mark.asyncio
async def test_unknown_user_and_wrong_password_look_the_same(acme, reader_user):
    with pytest.raises(InvalidCredentialsError) as unknown:
        await authenticate_tenant_user(acme.users, "mallory", USER_PASSWORD)
    with pytest.raises(InvalidCredentialsError) as wrong:
        await authenticate_tenant_user(acme.users, "bob", "wrong-password")

    assert unknown.value.message == wrong.value.message
    assert (await acme.users.get_by_id(reader_user.id)).login_attempts == 1


@pytest.mark.asyncio
async def test_lockout_after_repeated_failures(acme, reader_user):
    for _ in range(settings.AUTH_MAX_LOGIN_FAILS):
        with pytest.raises(InvalidCredentialsError):
            await authenticate_tenant_user(acme.users, "bob", "wrong-password")

    user = await acme.users.get_by_id(reader_user.id)
    assert user.is_locked

    # 锁定期间正确密码也被拒绝
    with pytest.raises(AccountLockedError) as exc_info:
        await authenticate_tenant_user(acme.users, "bob", USER_PASSWORD)
    assert exc_info.value.status_code == 423


@pytest.mark.asyncio
async def test_expired_lock_restarts_counting(acme, reader_user):
    now = datetime.now(timezone.utc)
    for _ in range(settings.AUTH_MAX_LOGIN_FAILS):
        await acme.users.record_failed_login(reader_user.id, now=now)

    later = now + timedelta(minutes=settings.AUTH_LOCKOUT_MINUTES + 1)
    user = await acme.users.record_failed_login(reader_user.id, now=later)

    assert user.login_attempts == 1
    assert user.lock_until is None


@pytest.mark.asyncio
async def test_inactive_user_cannot_login(acme):
    await acme.users.create_user(
        username="ivan", email="ivan@acme.mn", password=USER_PASSWORD, status="suspended"
    )

    with pytest.raises(AccountInactiveError):
        await authenticate_tenant_user(acme.users, "ivan", USER_PASSWORD)


# ============================================================
# 租借
# ============================================================


def test_calculate_late_fee():
    end = START + timedelta(days=7)

    assert calculate_late_fee(end, end - timedelta(hours=1), 2) == Decimal("0")
    assert calculate_late_fee(end, end + timedelta(hours=1), 2) == Decimal("2.00")
    assert calculate_late_fee(end, end + timedelta(days=2, hours=1), "1.5") == Decimal("4.50")
    # 宽限期内不计费
    assert calculate_late_fee(end, end + timedelta(days=3), 2, grace_period_days=3) == Decimal("0")
    assert calculate_late_fee(end, end + timedelta(days=4, hours=1), 2, 3) == Decimal("4.00")


@pytest.mark.asyncio
async def test_create_rental(acme, reader_user):
    rental = await acme.rentals.create_rental(
        user_id=reader_user.id,
        item_id="webtoon-42",
        rental_period=7,
        start_date=START,
        total_cost="9.90",
        chapters=[1, 2],
    )

    assert rental.status == RentalStatus.ACTIVE
    assert rental.end_date == START + timedelta(days=7)
    assert rental.total_cost == Decimal("9.90")
    assert [c["chapter_number"] for c in rental.chapters] == [1, 2]

    stored = await acme.rentals.get_rental(rental.id)
    assert stored.item_id == "webtoon-42"
    assert stored.get_days_remaining(now=START + timedelta(days=5, hours=1)) == 2
    assert not stored.is_overdue_at(now=START + timedelta(days=6))
    assert stored.is_overdue_at(now=START + timedelta(days=8))


@pytest.mark.asyncio
async def test_create_rental_rejects_non_positive_period(acme, reader_user):
    with pytest.raises(ValueError):
        await acme.rentals.create_rental(user_id=reader_user.id, item_id="x", rental_period=0)


@pytest.mark.asyncio
async def test_return_rental_on_time(acme, reader_user):
    rental = await acme.rentals.create_rental(
        user_id=reader_user.id, item_id="book-1", rental_period=7, start_date=START
    )

    returned = await acme.rentals.return_rental(
        rental.id, now=START + timedelta(days=3), late_fee_per_day=1
    )

    assert returned.status == RentalStatus.RETURNED
    assert not returned.is_late
    assert returned.late_fee == Decimal("0")


@pytest.mark.asyncio
async def test_return_rental_late_charges_fee(acme, reader_user):
    rental = await acme.rentals.create_rental(
        user_id=reader_user.id, item_id="book-1", rental_period=7, start_date=START
    )

    returned = await acme.rentals.return_rental(
        rental.id,
        now=START + timedelta(days=9, hours=12),
        late_fee_per_day="1.5",
        grace_period_days=1,
    )

    assert returned.is_late
    assert returned.late_fee == Decimal("3.00")
    stored = await acme.rentals.get_rental(rental.id)
    assert stored.status == RentalStatus.RETURNED
    assert stored.late_fee == Decimal("3.00")


@pytest.mark.asyncio
async def test_return_and_cancel_state_rules(acme, reader_user):
    rental = await acme.rentals.create_rental(user_id=reader_user.id, item_id="book-1")
    await acme.rentals.cancel_rental(rental.id)

    with pytest.raises(InvalidRentalStateError):
        await acme.rentals.cancel_rental(rental.id)
    with pytest.raises(InvalidRentalStateError):
        await acme.rentals.return_rental(rental.id)
    with pytest.raises(RentalNotFoundError):
        await acme.rentals.return_rental("missing")


@pytest.mark.asyncio
async def test_mark_overdue_and_listing(acme, reader_user, manager_user):
    overdue = await acme.rentals.create_rental(
        user_id=reader_user.id, item_id="book-1", rental_period=1, start_date=START
    )
    current = await acme.rentals.create_rental(
        user_id=reader_user.id, item_id="book-2", rental_period=30, start_date=START
    )
    await acme.rentals.create_rental(
        user_id=manager_user.id, item_id="book-1", rental_period=30, start_date=START
    )
    now = START + timedelta(days=3)

    expired = await acme.rentals.list_expired(now=now)
    assert [r.id for r in expired] == [overdue.id]

    assert await acme.rentals.mark_overdue(now=now, late_fee_per_day=1) == 1
    stored = await acme.rentals.get_rental(overdue.id)
    assert stored.status == RentalStatus.EXPIRED
    assert stored.late_fee == Decimal("2.00")

    active = await acme.rentals.list_active_by_user(reader_user.id)
    assert [r.id for r in active] == [current.id]

    assert len(await acme.rentals.list_by_item("book-1")) == 2

    mine, total = await acme.rentals.list_rentals(user_id=reader_user.id)
    assert total == 2
    expired_only, total = await acme.rentals.list_rentals(status=RentalStatus.EXPIRED)
    assert [r.id for r in expired_only] == [overdue.id]

    # 逾期记录仍可归还
    returned = await acme.rentals.return_rental(overdue.id, now=now, late_fee_per_day=1)
    assert returned.status == RentalStatus.RETURNED
