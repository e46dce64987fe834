"""
Promo engagement ledger

Validates promo codes against orders and applies or removes them on
bookings. Apply and Remove run as one transaction each: the booking
amounts, the usage row and the promo code's usage counter commit
together or not at all.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import uuid

from trailhead.core.database import atomic
from trailhead.core.exceptions import PromoRejection, PromoRejectionReason
from trailhead.core.security import is_admin
from trailhead.models import Booking, PromoCode, PromoCodeUsage
from trailhead.utils.helpers import format_currency, round_money, utcnow
from .promo_rules import (
    CandidateOrder,
    DiscountQuote,
    RuleContext,
    first_failed_rule,
    quote,
)
from .promo_stores import BookingStore, PromoCodeCatalog, UsageJournal, normalize_code

logger = logging.getLogger(__name__)

class PromoLedger:
    """
    Service for validating, applying and removing promo codes
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.bookings = BookingStore(db)
        self.catalog = PromoCodeCatalog(db)
        self.usages = UsageJournal(db)

    async def _check_rules(
        self,
        promo: Optional[PromoCode],
        order: CandidateOrder,
        now: datetime
    ) -> None:
        ctx = RuleContext(now=now)
        if promo is not None and promo.user_usage_limit is not None:
            ctx.user_usage_count = await self.usages.count_by_code_and_user(promo.id, order.user_id)

        failed = first_failed_rule(promo, order, ctx)
        if failed is not None:
            logger.info(
                "Promo code %s rejected by rule %s for user %s",
                promo.code if promo is not None else "<unknown>",
                failed.name,
                order.user_id,
            )
            raise PromoRejection(failed.reason)

    async def _recheck_user_limit(self, promo: PromoCode, user_id: str) -> None:
        """Count the user's usages again once this apply's row is written"""
        if promo.user_usage_limit is None:
            return

        used = await self.usages.count_by_code_and_user(promo.id, user_id)
        if used > promo.user_usage_limit:
            logger.info(
                "Promo code %s: user %s went over the per-user limit concurrently",
                promo.code, user_id
            )
            raise PromoRejection(PromoRejectionReason.USER_LIMIT_EXCEEDED)

    async def validate(
        self,
        code: str,
        order: CandidateOrder,
        now: Optional[datetime] = None
    ) -> DiscountQuote:
        """
        Check a promo code against a candidate order without writing anything

        Args:
            code: Promo code, any case
            order: Candidate order
            now: Evaluation time, defaults to the current UTC time

        Returns:
            Discount breakdown

        Raises:
            PromoRejection: With the reason of the first failing rule
        """
        promo = await self.catalog.find_by_code(code)
        await self._check_rules(promo, order, now or utcnow())
        return quote(promo, order.original_amount)

    def _ensure_can_modify(self, booking: Booking, identity: Dict[str, Any]) -> None:
        if not is_admin(identity) and str(booking.user_id) != str(identity.get("id")):
            logger.warning(
                "User %s tried to modify booking %s owned by %s",
                identity.get("id"), booking.id, booking.user_id
            )
            raise PromoRejection(PromoRejectionReason.UNAUTHORIZED)

    async def apply(
        self,
        code: str,
        booking_id: uuid.UUID,
        original_amount: Optional[Decimal],
        identity: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> DiscountQuote:
        """
        Apply a promo code to a booking

        The booking's ``total_amount`` is the amount the discount is computed
        on; ``original_amount`` from the caller is only cross-checked.

        Raises:
            PromoRejection: BOOKING_NOT_FOUND, UNAUTHORIZED, ALREADY_APPLIED
                or any eligibility reason
        """
        now = now or utcnow()

        try:
            async with atomic(self.db):
                booking = await self.bookings.find_by_id(booking_id, for_update=True)
                if booking is None:
                    raise PromoRejection(PromoRejectionReason.BOOKING_NOT_FOUND)

                self._ensure_can_modify(booking, identity)

                if await self.usages.find_by_booking(booking.id) is not None:
                    raise PromoRejection(PromoRejectionReason.ALREADY_APPLIED)

                base_amount = round_money(booking.total_amount)
                if original_amount is not None and round_money(original_amount) != base_amount:
                    logger.warning(
                        "Booking %s: client amount %s differs from booking total %s, using total",
                        booking.id, original_amount, base_amount
                    )

                # Locked so applies by one user on different bookings queue up
                promo = await self.catalog.find_by_code(code, for_update=True)
                order = CandidateOrder(
                    original_amount=base_amount,
                    user_id=str(booking.user_id),
                    event_id=str(booking.event_id),
                    event_category=_category_of(booking),
                    booking_id=str(booking.id),
                )
                await self._check_rules(promo, order, now)
                discount = quote(promo, base_amount)

                await self.bookings.update_amounts(
                    booking, discount.discount_amount, discount.final_amount
                )
                await self.usages.insert(
                    PromoCodeUsage(
                        promo_code_id=promo.id,
                        user_id=str(booking.user_id),
                        booking_id=booking.id,
                        original_amount=discount.original_amount,
                        discount_amount=discount.discount_amount,
                        final_amount=discount.final_amount,
                        used_at=now,
                    )
                )
                await self._recheck_user_limit(promo, order.user_id)
                if not await self.catalog.increment_usage(promo.id, 1):
                    # Another booking took the last slot since the rules ran
                    raise PromoRejection(PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED)
        except IntegrityError:
            # Lost the race with a concurrent apply on the same booking
            logger.info("Concurrent promo application detected for booking %s", booking_id)
            raise PromoRejection(PromoRejectionReason.ALREADY_APPLIED)

        logger.info(
            "Applied promo code %s to booking %s: %s off %s",
            discount.code, booking_id,
            format_currency(discount.discount_amount), format_currency(discount.original_amount)
        )
        return discount

    async def remove(self, booking_id: uuid.UUID, identity: Dict[str, Any]) -> PromoCodeUsage:
        """
        Remove the promo code applied to a booking and restore its amounts

        Raises:
            PromoRejection: BOOKING_NOT_FOUND, UNAUTHORIZED or NO_PROMO_APPLIED
        """
        async with atomic(self.db):
            booking = await self.bookings.find_by_id(booking_id, for_update=True)
            if booking is None:
                raise PromoRejection(PromoRejectionReason.BOOKING_NOT_FOUND)

            self._ensure_can_modify(booking, identity)

            usage = await self.usages.delete_by_booking(booking.id)
            if usage is None:
                raise PromoRejection(PromoRejectionReason.NO_PROMO_APPLIED)

            await self.bookings.update_amounts(
                booking, Decimal("0.00"), round_money(booking.total_amount)
            )
            if not await self.catalog.increment_usage(usage.promo_code_id, -1):
                logger.warning(
                    "Usage counter of promo code %s already at zero while removing booking %s",
                    usage.promo_code_id, booking_id
                )

        logger.info("Removed promo code %s from booking %s", usage.promo_code_id, booking_id)
        return usage

def _category_of(booking: Booking) -> Optional[str]:
    if booking.event is None or booking.event.category is None:
        return None
    category = booking.event.category
    return getattr(category, "value", category)
