import asyncio
from datetime import timedelta
from decimal import Decimal
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import ADMIN_ID, OTHER_USER_ID, USER_ID, identity, promo_values
from trailhead.core.exceptions import PromoRejection, PromoRejectionReason
from trailhead.models import (
    Base,
    Booking,
    BookingStatus,
    Event,
    EventCategory,
    PromoCode,
    PromoCodeType,
    PromoCodeUsage,
)
from trailhead.services import CandidateOrder, PromoLedger
from trailhead.services.promo_stores import PromoCodeCatalog, UsageJournal
from trailhead.utils.helpers import utcnow


async def usage_rows(db, promo_id):
    return await db.scalar(
        select(func.count(PromoCodeUsage.id)).where(PromoCodeUsage.promo_code_id == promo_id)
    )


async def assert_counter_matches_rows(db, promo):
    await db.refresh(promo)
    assert promo.usage_count == await usage_rows(db, promo.id)


def order_for(event, amount="500.00", user_id=USER_ID):
    return CandidateOrder(
        original_amount=Decimal(amount),
        user_id=user_id,
        event_id=str(event.id),
        event_category=event.category.value,
    )


async def test_validate_returns_quote_without_writing(db, event, create_promo):
    promo = await create_promo(code="HALF", value=Decimal("50"), max_discount_amount=Decimal("100"))

    result = await PromoLedger(db).validate("half", order_for(event))

    assert result.code == "HALF"
    assert result.discount_amount == Decimal("100.00")
    assert result.final_amount == Decimal("400.00")
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 0


async def test_validate_unknown_code(db, event):
    with pytest.raises(PromoRejection) as exc_info:
        await PromoLedger(db).validate("NOPE", order_for(event))
    assert exc_info.value.reason == PromoRejectionReason.INVALID_CODE
    assert exc_info.value.status_code == 400


async def test_validate_expiry_boundary(db, event, create_promo):
    now = utcnow()
    await create_promo(code="LASTDAY", valid_from=now - timedelta(days=7), valid_until=now)
    ledger = PromoLedger(db)

    result = await ledger.validate("LASTDAY", order_for(event), now=now)
    assert result.discount_amount == Decimal("50.00")

    with pytest.raises(PromoRejection) as exc_info:
        await ledger.validate("LASTDAY", order_for(event), now=now + timedelta(microseconds=1))
    assert exc_info.value.reason == PromoRejectionReason.EXPIRED


async def test_validate_user_limit_counts_past_usages(db, event, create_promo, create_booking):
    await create_promo(code="ONCE", user_usage_limit=1)
    ledger = PromoLedger(db)
    booking = await create_booking(event)

    await ledger.apply("ONCE", booking.id, None, identity())

    with pytest.raises(PromoRejection) as exc_info:
        await ledger.validate("ONCE", order_for(event))
    assert exc_info.value.reason == PromoRejectionReason.USER_LIMIT_EXCEEDED

    # Other users are unaffected
    result = await ledger.validate("ONCE", order_for(event, user_id=OTHER_USER_ID))
    assert result.code == "ONCE"


async def test_apply_updates_booking_usage_and_counter(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event, total_amount="500.00")

    result = await PromoLedger(db).apply("save10", booking.id, Decimal("500.00"), identity())

    assert result.discount_amount == Decimal("50.00")
    assert result.final_amount == Decimal("450.00")

    await db.refresh(booking)
    assert booking.discount_amount == Decimal("50.00")
    assert booking.final_amount == Decimal("450.00")

    usage = await db.scalar(select(PromoCodeUsage).where(PromoCodeUsage.booking_id == booking.id))
    assert usage.user_id == USER_ID
    assert usage.original_amount == Decimal("500.00")
    assert usage.discount_amount == Decimal("50.00")
    assert usage.final_amount == Decimal("450.00")

    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 1


async def test_apply_uses_booking_total_over_client_amount(db, event, create_promo, create_booking):
    await create_promo(code="SAVE10")
    booking = await create_booking(event, total_amount="800.00")

    result = await PromoLedger(db).apply("SAVE10", booking.id, Decimal("100.00"), identity())

    assert result.original_amount == Decimal("800.00")
    assert result.discount_amount == Decimal("80.00")


async def test_apply_twice_is_rejected(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event)
    ledger = PromoLedger(db)

    await ledger.apply("SAVE10", booking.id, None, identity())
    with pytest.raises(PromoRejection) as exc_info:
        await ledger.apply("SAVE10", booking.id, None, identity())

    assert exc_info.value.reason == PromoRejectionReason.ALREADY_APPLIED
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 1


async def test_global_limit_blocks_second_booking(db, event, create_promo, create_booking):
    promo = await create_promo(code="FIRST1", usage_limit=1)
    first = await create_booking(event, user_id=USER_ID)
    second = await create_booking(event, user_id=OTHER_USER_ID)
    ledger = PromoLedger(db)

    await ledger.apply("FIRST1", first.id, None, identity(USER_ID))
    with pytest.raises(PromoRejection) as exc_info:
        await ledger.apply("FIRST1", second.id, None, identity(OTHER_USER_ID))

    assert exc_info.value.reason == PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED
    await db.refresh(second)
    assert second.discount_amount == Decimal("0.00")
    assert second.final_amount == Decimal("500.00")
    await assert_counter_matches_rows(db, promo)


async def test_category_restriction(db, create_event, create_promo, create_booking):
    await create_promo(code="TREKONLY", applicable_categories=[EventCategory.TREKKING.value])
    camping_booking = await create_booking(await create_event(category=EventCategory.CAMPING))
    trekking_booking = await create_booking(await create_event(category=EventCategory.TREKKING))
    camping_id, trekking_id = camping_booking.id, trekking_booking.id
    ledger = PromoLedger(db)

    with pytest.raises(PromoRejection) as exc_info:
        await ledger.apply("TREKONLY", camping_id, None, identity())
    assert exc_info.value.reason == PromoRejectionReason.CATEGORY_NOT_ELIGIBLE

    result = await ledger.apply("TREKONLY", trekking_id, None, identity())
    assert result.code == "TREKONLY"


async def test_private_code_for_targeted_user_only(db, event, create_promo, create_booking):
    await create_promo(code="VIPONLY", is_public=False, target_users=[USER_ID])
    ledger = PromoLedger(db)

    result = await ledger.apply("VIPONLY", (await create_booking(event, user_id=USER_ID)).id, None, identity(USER_ID))
    assert result.code == "VIPONLY"

    other_booking = await create_booking(event, user_id=OTHER_USER_ID)
    with pytest.raises(PromoRejection) as exc_info:
        await ledger.apply("VIPONLY", other_booking.id, None, identity(OTHER_USER_ID))
    assert exc_info.value.reason == PromoRejectionReason.NOT_TARGETED


async def test_apply_to_missing_booking(db, create_promo):
    await create_promo(code="SAVE10")
    with pytest.raises(PromoRejection) as exc_info:
        await PromoLedger(db).apply("SAVE10", uuid.uuid4(), None, identity())
    assert exc_info.value.reason == PromoRejectionReason.BOOKING_NOT_FOUND
    assert exc_info.value.status_code == 404


async def test_apply_to_someone_elses_booking(db, event, create_promo, create_booking):
    await create_promo(code="SAVE10")
    booking = await create_booking(event, user_id=OTHER_USER_ID)

    with pytest.raises(PromoRejection) as exc_info:
        await PromoLedger(db).apply("SAVE10", booking.id, None, identity(USER_ID))

    assert exc_info.value.reason == PromoRejectionReason.UNAUTHORIZED
    assert exc_info.value.status_code == 401


async def test_admin_can_apply_and_remove_for_any_booking(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event, user_id=USER_ID)
    ledger = PromoLedger(db)
    admin = identity(ADMIN_ID, role="ADMIN")

    await ledger.apply("SAVE10", booking.id, None, admin)
    usage = await db.scalar(select(PromoCodeUsage).where(PromoCodeUsage.booking_id == booking.id))
    # Usage is recorded against the booking owner
    assert usage.user_id == USER_ID

    await ledger.remove(booking.id, admin)
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 0


async def test_apply_remove_round_trip_restores_state(db, event, create_promo, create_booking):
    promo = await create_promo(code="ROUNDTRIP", type=PromoCodeType.FIXED_AMOUNT, value=Decimal("120"))
    booking = await create_booking(event, total_amount="999.00")
    ledger = PromoLedger(db)

    await ledger.apply("ROUNDTRIP", booking.id, None, identity())
    removed = await ledger.remove(booking.id, identity())

    assert removed.discount_amount == Decimal("120.00")
    await db.refresh(booking)
    assert booking.discount_amount == Decimal("0.00")
    assert booking.final_amount == Decimal("999.00")
    assert await db.scalar(
        select(PromoCodeUsage).where(PromoCodeUsage.booking_id == booking.id)
    ) is None
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 0

    # The booking can take a promo code again
    result = await ledger.apply("ROUNDTRIP", booking.id, None, identity())
    assert result.final_amount == Decimal("879.00")


async def test_remove_without_promo(db, event, create_booking):
    booking = await create_booking(event)

    with pytest.raises(PromoRejection) as exc_info:
        await PromoLedger(db).remove(booking.id, identity())

    assert exc_info.value.reason == PromoRejectionReason.NO_PROMO_APPLIED
    assert exc_info.value.status_code == 404


async def test_remove_someone_elses_promo(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event, user_id=USER_ID)
    ledger = PromoLedger(db)
    await ledger.apply("SAVE10", booking.id, None, identity(USER_ID))

    with pytest.raises(PromoRejection) as exc_info:
        await ledger.remove(booking.id, identity(OTHER_USER_ID))

    assert exc_info.value.reason == PromoRejectionReason.UNAUTHORIZED
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 1


async def test_remove_never_takes_counter_below_zero(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event)
    ledger = PromoLedger(db)
    await ledger.apply("SAVE10", booking.id, None, identity())

    await db.execute(update(PromoCode).where(PromoCode.id == promo.id).values(usage_count=0))
    await db.commit()

    await ledger.remove(booking.id, identity())
    await db.refresh(promo)
    assert promo.usage_count == 0


async def test_concurrent_apply_on_same_booking_leaves_no_partial_state(
    db, event, create_promo, create_booking
):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event)
    ledger = PromoLedger(db)
    await ledger.apply("SAVE10", booking.id, None, identity())

    # The second request does not see the first one's usage row
    with patch.object(UsageJournal, "find_by_booking", AsyncMock(return_value=None)):
        with pytest.raises(PromoRejection) as exc_info:
            await ledger.apply("SAVE10", booking.id, None, identity())

    assert exc_info.value.reason == PromoRejectionReason.ALREADY_APPLIED
    await db.refresh(booking)
    assert booking.final_amount == Decimal("450.00")
    await assert_counter_matches_rows(db, promo)
    assert await usage_rows(db, promo.id) == 1


async def test_counter_taken_between_check_and_write(db, event, create_promo, create_booking):
    promo = await create_promo(code="LASTONE", usage_limit=1)
    booking = await create_booking(event)
    ledger = PromoLedger(db)

    # Another booking used the last slot after the rules passed
    await db.execute(update(PromoCode).where(PromoCode.id == promo.id).values(usage_count=1))
    await db.commit()

    with patch.object(PromoLedger, "_check_rules", AsyncMock(return_value=None)):
        with pytest.raises(PromoRejection) as exc_info:
            await ledger.apply("LASTONE", booking.id, None, identity())

    assert exc_info.value.reason == PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED
    await db.refresh(booking)
    assert booking.discount_amount == Decimal("0.00")
    assert booking.final_amount == Decimal("500.00")
    await db.refresh(promo)
    assert promo.usage_count == 1
    assert await usage_rows(db, promo.id) == 0


async def test_counter_tracks_usage_rows_across_operations(db, create_event, create_promo, create_booking):
    promo = await create_promo(code="BUSY", usage_limit=3)
    event = await create_event()
    ledger = PromoLedger(db)
    bookings = []
    for n in range(4):
        booking = await create_booking(event, user_id=f"user-{n}")
        bookings.append((booking.id, booking.user_id))

    for booking_id, user_id in bookings[:3]:
        await ledger.apply("BUSY", booking_id, None, identity(user_id))
        await assert_counter_matches_rows(db, promo)

    with pytest.raises(PromoRejection):
        await ledger.apply("BUSY", bookings[3][0], None, identity(bookings[3][1]))
    await assert_counter_matches_rows(db, promo)

    await ledger.remove(bookings[0][0], identity(bookings[0][1]))
    await assert_counter_matches_rows(db, promo)

    await ledger.apply("BUSY", bookings[3][0], None, identity(bookings[3][1]))
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 3


async def test_user_limit_is_checked_again_after_writing(db, create_event, create_promo, create_booking):
    promo = await create_promo(code="ONCE", user_usage_limit=1)
    event = await create_event()
    first = await create_booking(event)
    second = await create_booking(event)
    second_id = second.id
    ledger = PromoLedger(db)
    await ledger.apply("ONCE", first.id, None, identity())

    # The rules ran before the first apply committed
    with patch.object(PromoLedger, "_check_rules", AsyncMock(return_value=None)):
        with pytest.raises(PromoRejection) as exc_info:
            await ledger.apply("ONCE", second_id, None, identity())

    assert exc_info.value.reason == PromoRejectionReason.USER_LIMIT_EXCEEDED
    second = await db.get(Booking, second_id, populate_existing=True)
    assert second.discount_amount == Decimal("0.00")
    assert second.final_amount == Decimal("500.00")
    await assert_counter_matches_rows(db, promo)
    assert promo.usage_count == 1


async def test_concurrent_applies_by_one_user_respect_user_limit(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with factory() as session:
        event = Event(title="Chadar Trek", slug="chadar-trek", category=EventCategory.TREKKING, is_active=True)
        session.add(event)
        await session.flush()
        promo = PromoCode(**promo_values(code="ONCE", user_usage_limit=1))
        bookings = [
            Booking(
                booking_reference=f"TH-{uuid.uuid4().hex[:10].upper()}",
                user_id=USER_ID,
                event_id=event.id,
                status=BookingStatus.PENDING,
                total_amount=Decimal("500.00"),
                discount_amount=Decimal("0.00"),
                final_amount=Decimal("500.00"),
            )
            for _ in range(2)
        ]
        session.add_all([promo, *bookings])
        await session.commit()
        promo_id = promo.id
        booking_ids = [booking.id for booking in bookings]

    async def apply_in_own_session(booking_id):
        async with factory() as session:
            try:
                await PromoLedger(session).apply("ONCE", booking_id, None, identity())
            except PromoRejection as exc:
                return exc.reason
            return "ok"

    try:
        results = await asyncio.gather(*(apply_in_own_session(b) for b in booking_ids))
        async with factory() as session:
            rows = await usage_rows(session, promo_id)
            usage_count = await session.scalar(
                select(PromoCode.usage_count).where(PromoCode.id == promo_id)
            )
    finally:
        await engine.dispose()

    assert results.count("ok") == 1
    assert PromoRejectionReason.USER_LIMIT_EXCEEDED in results
    assert rows == 1
    assert usage_count == 1


async def test_cancelled_apply_rolls_back(db, event, create_promo, create_booking):
    promo = await create_promo(code="SAVE10")
    booking = await create_booking(event)
    promo_id, booking_id = promo.id, booking.id

    with patch.object(PromoCodeCatalog, "increment_usage", AsyncMock(side_effect=asyncio.CancelledError())):
        with pytest.raises(asyncio.CancelledError):
            await PromoLedger(db).apply("SAVE10", booking_id, None, identity())

    booking = await db.get(Booking, booking_id, populate_existing=True)
    assert booking.discount_amount == Decimal("0.00")
    assert booking.final_amount == Decimal("500.00")
    assert await usage_rows(db, promo_id) == 0
    promo = await db.get(PromoCode, promo_id, populate_existing=True)
    assert promo.usage_count == 0
