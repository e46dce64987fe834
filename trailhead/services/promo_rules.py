"""
Promo code eligibility rules and discount arithmetic

Each rule is a named predicate over a promo code and a candidate order.
Rules run in a fixed order and the first failing rule decides the
rejection reason.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from trailhead.core.exceptions import PromoRejectionReason
from trailhead.models import PromoCode, PromoCodeStatus, PromoCodeType
from trailhead.utils.helpers import ensure_utc, round_money, to_decimal

@dataclass
class CandidateOrder:
    """The order a promo code is checked against"""
    original_amount: Decimal
    user_id: str
    event_id: Optional[str] = None
    event_category: Optional[str] = None
    booking_id: Optional[str] = None

@dataclass
class RuleContext:
    """Facts looked up from storage before the rules run"""
    now: datetime
    user_usage_count: int = 0

@dataclass(frozen=True)
class PromoRule:
    name: str
    reason: PromoRejectionReason
    check: Callable[[PromoCode, CandidateOrder, RuleContext], bool]

@dataclass
class DiscountQuote:
    """Discount computed for an eligible order"""
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    code: str
    description: str
    promo_code_id: Optional[object] = field(default=None, repr=False)

    @property
    def savings(self) -> Decimal:
        return self.discount_amount

def _members(values) -> set:
    return {str(value) for value in (values or [])}

def is_code_active(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    return bool(promo.is_active) and promo.status == PromoCodeStatus.ACTIVE

def is_within_window(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    return ensure_utc(promo.valid_from) <= ctx.now <= ensure_utc(promo.valid_until)

def has_global_capacity(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    if promo.usage_limit is None:
        return True
    return (promo.usage_count or 0) < promo.usage_limit

def has_user_capacity(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    if promo.user_usage_limit is None:
        return True
    return ctx.user_usage_count < promo.user_usage_limit

def meets_minimum_order(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    if promo.min_order_amount is None:
        return True
    return order.original_amount >= to_decimal(promo.min_order_amount)

def is_event_applicable(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    allowed = _members(promo.applicable_events)
    return not allowed or str(order.event_id) in allowed

def is_category_applicable(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    allowed = _members(promo.applicable_categories)
    return not allowed or str(order.event_category) in allowed

def is_event_not_excluded(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    return str(order.event_id) not in _members(promo.excluded_events)

def is_user_targeted(promo: PromoCode, order: CandidateOrder, ctx: RuleContext) -> bool:
    if promo.is_public:
        return True
    return str(order.user_id) in _members(promo.target_users)

PROMO_RULES: List[PromoRule] = [
    PromoRule("code_active", PromoRejectionReason.INVALID_CODE, is_code_active),
    PromoRule("validity_window", PromoRejectionReason.EXPIRED, is_within_window),
    PromoRule("global_usage_limit", PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED, has_global_capacity),
    PromoRule("user_usage_limit", PromoRejectionReason.USER_LIMIT_EXCEEDED, has_user_capacity),
    PromoRule("minimum_order", PromoRejectionReason.BELOW_MINIMUM, meets_minimum_order),
    PromoRule("applicable_events", PromoRejectionReason.EVENT_NOT_ELIGIBLE, is_event_applicable),
    PromoRule("applicable_categories", PromoRejectionReason.CATEGORY_NOT_ELIGIBLE, is_category_applicable),
    PromoRule("excluded_events", PromoRejectionReason.EVENT_EXCLUDED, is_event_not_excluded),
    PromoRule("target_users", PromoRejectionReason.NOT_TARGETED, is_user_targeted),
]

def first_failed_rule(
    promo: Optional[PromoCode],
    order: CandidateOrder,
    ctx: RuleContext,
    rules: List[PromoRule] = PROMO_RULES
) -> Optional[PromoRule]:
    """Return the first rule the order breaks, or None when all pass"""
    if promo is None:
        return rules[0]
    for rule in rules:
        if not rule.check(promo, order, ctx):
            return rule
    return None

def compute_discount(promo: PromoCode, original_amount: Decimal) -> Decimal:
    """
    Discount for ``original_amount``, clamped and rounded half-up to 2 places

    The discount never exceeds ``max_discount_amount`` (when set) nor the
    order amount itself.
    """
    original_amount = to_decimal(original_amount)
    value = to_decimal(promo.value)

    if promo.type == PromoCodeType.PERCENTAGE:
        raw = original_amount * value / Decimal(100)
    else:
        raw = value

    candidates = [raw, original_amount]
    if promo.max_discount_amount is not None:
        candidates.append(to_decimal(promo.max_discount_amount))

    return max(round_money(min(candidates)), Decimal("0.00"))

def quote(promo: PromoCode, original_amount: Decimal) -> DiscountQuote:
    """Build the discount breakdown for an eligible order"""
    original_amount = round_money(original_amount)
    discount = compute_discount(promo, original_amount)
    return DiscountQuote(
        original_amount=original_amount,
        discount_amount=discount,
        final_amount=original_amount - discount,
        code=promo.code,
        description=promo.description,
        promo_code_id=promo.id,
    )
