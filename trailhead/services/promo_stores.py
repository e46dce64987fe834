"""
Storage collaborators used by the promo ledger

All three share the caller's session so their reads and writes join the
same transaction.
"""

from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.orm import selectinload
import uuid

from trailhead.models import Booking, PromoCode, PromoCodeUsage

class BookingStore:
    """Reads bookings and writes their discount fields"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, booking_id: uuid.UUID, for_update: bool = False) -> Optional[Booking]:
        """Get booking with its event, optionally locking the row"""
        stmt = (
            select(Booking)
            .options(selectinload(Booking.event))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Booking)

        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def update_amounts(
        self,
        booking: Booking,
        discount_amount: Decimal,
        final_amount: Decimal
    ) -> Booking:
        """Set the booking's discount and final amounts"""
        booking.discount_amount = discount_amount
        booking.final_amount = final_amount
        await self.db.flush()
        return booking

class PromoCodeCatalog:
    """Promo code lookups and the usage counter"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_code(self, code: str, for_update: bool = False) -> Optional[PromoCode]:
        """Get promo code by its normalized code, optionally locking the row"""
        stmt = (
            select(PromoCode)
            .where(PromoCode.code == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_usage(self, promo_code_id: uuid.UUID, delta: int) -> bool:
        """
        Move ``usage_count`` by ``delta`` in a single conditional UPDATE

        Increments only succeed while the count stays within ``usage_limit``;
        decrements never take the count below zero.

        Returns:
            True when the row was updated
        """
        stmt = update(PromoCode).where(PromoCode.id == promo_code_id)

        if delta > 0:
            stmt = stmt.where(
                or_(
                    PromoCode.usage_limit.is_(None),
                    PromoCode.usage_count + delta <= PromoCode.usage_limit
                )
            )
        else:
            stmt = stmt.where(PromoCode.usage_count + delta >= 0)

        stmt = stmt.values(usage_count=PromoCode.usage_count + delta).execution_options(
            synchronize_session=False
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

class UsageJournal:
    """Promo code usage records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, usage: PromoCodeUsage) -> PromoCodeUsage:
        """Add usage row; raises IntegrityError when the booking already has one"""
        self.db.add(usage)
        await self.db.flush()
        return usage

    async def find_by_booking(self, booking_id: uuid.UUID) -> Optional[PromoCodeUsage]:
        """Get the usage row attached to a booking"""
        result = await self.db.execute(
            select(PromoCodeUsage)
            .where(PromoCodeUsage.booking_id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def delete_by_booking(self, booking_id: uuid.UUID) -> Optional[PromoCodeUsage]:
        """Delete and return the usage row attached to a booking"""
        usage = await self.find_by_booking(booking_id)
        if usage is None:
            return None

        await self.db.execute(
            delete(PromoCodeUsage)
            .where(PromoCodeUsage.id == usage.id)
            .execution_options(synchronize_session=False)
        )
        self.db.expunge(usage)
        return usage

    async def count_by_code_and_user(self, promo_code_id: uuid.UUID, user_id: str) -> int:
        """Number of times a user has used a promo code"""
        count = await self.db.scalar(
            select(func.count(PromoCodeUsage.id)).where(
                PromoCodeUsage.promo_code_id == promo_code_id,
                PromoCodeUsage.user_id == str(user_id)
            )
        )
        return count or 0

    async def count_by_code(self, promo_code_id: uuid.UUID) -> int:
        """Number of live usage rows for a promo code"""
        count = await self.db.scalar(
            select(func.count(PromoCodeUsage.id)).where(
                PromoCodeUsage.promo_code_id == promo_code_id
            )
        )
        return count or 0

def normalize_code(code: str) -> str:
    """Promo codes are matched case-insensitively"""
    return (code or "").strip().upper()
