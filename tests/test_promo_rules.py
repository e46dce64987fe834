from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import promo_values
from trailhead.core.exceptions import PromoRejectionReason
from trailhead.models import PromoCode, PromoCodeStatus, PromoCodeType
from trailhead.services.promo_rules import (
    PROMO_RULES,
    CandidateOrder,
    RuleContext,
    compute_discount,
    first_failed_rule,
    quote,
)
from trailhead.utils.helpers import format_currency, round_money, utcnow

EVENT_ID = "0b7d6c1e-5a4f-4f57-9a8e-0c4a1e2b3c4d"


def make_promo(**overrides):
    return PromoCode(**promo_values(**overrides))


def make_order(amount="500.00", user_id="user-1", event_id=EVENT_ID, category="TREKKING"):
    return CandidateOrder(
        original_amount=Decimal(amount),
        user_id=user_id,
        event_id=event_id,
        event_category=category,
    )


def failed_reason(promo, order=None, user_usage_count=0, now=None):
    ctx = RuleContext(now=now or utcnow(), user_usage_count=user_usage_count)
    rule = first_failed_rule(promo, order or make_order(), ctx)
    return rule.reason if rule is not None else None


def test_rules_run_in_documented_order():
    assert [rule.name for rule in PROMO_RULES] == [
        "code_active",
        "validity_window",
        "global_usage_limit",
        "user_usage_limit",
        "minimum_order",
        "applicable_events",
        "applicable_categories",
        "excluded_events",
        "target_users",
    ]


def test_eligible_promo_passes_all_rules():
    assert failed_reason(make_promo()) is None


def test_unknown_code_is_invalid():
    assert failed_reason(None) == PromoRejectionReason.INVALID_CODE


@pytest.mark.parametrize(
    "overrides",
    [{"is_active": False}, {"status": PromoCodeStatus.RETIRED}],
)
def test_inactive_or_retired_code_is_invalid(overrides):
    assert failed_reason(make_promo(**overrides)) == PromoRejectionReason.INVALID_CODE


def test_validity_window_is_inclusive():
    now = utcnow()
    promo = make_promo(valid_from=now - timedelta(days=1), valid_until=now)

    assert failed_reason(promo, now=now) is None
    assert failed_reason(promo, now=now + timedelta(microseconds=1)) == PromoRejectionReason.EXPIRED


def test_not_yet_started_code_is_expired():
    now = utcnow()
    promo = make_promo(valid_from=now + timedelta(hours=1), valid_until=now + timedelta(days=1))
    assert failed_reason(promo, now=now) == PromoRejectionReason.EXPIRED


def test_global_limit_reached():
    promo = make_promo(usage_limit=5, usage_count=5)
    assert failed_reason(promo) == PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED


def test_user_limit_reached():
    promo = make_promo(user_usage_limit=2)
    assert failed_reason(promo, user_usage_count=1) is None
    assert failed_reason(promo, user_usage_count=2) == PromoRejectionReason.USER_LIMIT_EXCEEDED


def test_minimum_order_amount():
    promo = make_promo(min_order_amount=Decimal("1000.00"))
    assert failed_reason(promo, make_order("999.99")) == PromoRejectionReason.BELOW_MINIMUM
    assert failed_reason(promo, make_order("1000.00")) is None


def test_event_whitelist():
    promo = make_promo(applicable_events=["some-other-event"])
    assert failed_reason(promo) == PromoRejectionReason.EVENT_NOT_ELIGIBLE
    assert failed_reason(make_promo(applicable_events=[EVENT_ID])) is None


def test_category_whitelist():
    promo = make_promo(applicable_categories=["TREKKING"])
    assert failed_reason(promo, make_order(category="CAMPING")) == PromoRejectionReason.CATEGORY_NOT_ELIGIBLE
    assert failed_reason(promo, make_order(category="TREKKING")) is None


def test_excluded_event():
    promo = make_promo(excluded_events=[EVENT_ID])
    assert failed_reason(promo) == PromoRejectionReason.EVENT_EXCLUDED


def test_private_code_only_for_targeted_users():
    promo = make_promo(is_public=False, target_users=["user-1"])
    assert failed_reason(promo, make_order(user_id="user-1")) is None
    assert failed_reason(promo, make_order(user_id="user-2")) == PromoRejectionReason.NOT_TARGETED


def test_private_code_without_targets_rejects_everyone():
    promo = make_promo(is_public=False, target_users=[])
    assert failed_reason(promo) == PromoRejectionReason.NOT_TARGETED


def test_first_failing_rule_wins():
    now = utcnow()
    promo = make_promo(
        valid_from=now - timedelta(days=10),
        valid_until=now - timedelta(days=1),
        usage_limit=1,
        usage_count=1,
        min_order_amount=Decimal("10000"),
    )
    assert failed_reason(promo, now=now) == PromoRejectionReason.EXPIRED


def test_percentage_discount_capped_by_max_discount():
    promo = make_promo(value=Decimal("50"), max_discount_amount=Decimal("100"))
    result = quote(promo, Decimal("500"))

    assert result.discount_amount == Decimal("100.00")
    assert result.final_amount == Decimal("400.00")
    assert result.savings == result.discount_amount


def test_fixed_discount_never_exceeds_order():
    promo = make_promo(type=PromoCodeType.FIXED_AMOUNT, value=Decimal("1000"))
    result = quote(promo, Decimal("300"))

    assert result.discount_amount == Decimal("300.00")
    assert result.final_amount == Decimal("0.00")


def test_percentage_discount_rounds_half_up():
    promo = make_promo(value=Decimal("15"))
    # 15% of 33.30 is 4.995
    assert compute_discount(promo, Decimal("33.30")) == Decimal("5.00")


def test_hundred_percent_discount_gives_free_order():
    promo = make_promo(value=Decimal("100"))
    result = quote(promo, Decimal("1299.99"))
    assert result.final_amount == Decimal("0.00")


def test_quote_carries_code_details():
    promo = make_promo(code="MONSOON", description="Monsoon trek offer")
    result = quote(promo, Decimal("250.50"))

    assert result.code == "MONSOON"
    assert result.description == "Monsoon trek offer"
    assert result.original_amount == result.discount_amount + result.final_amount


def test_round_money_half_up():
    assert round_money("2.675") == Decimal("2.68")
    assert round_money(Decimal("-1.005")) == Decimal("-1.01")


def test_format_currency_indian_grouping():
    assert format_currency(Decimal("125000"), symbol="₹") == "₹1,25,000.00"
    assert format_currency(Decimal("999.5"), symbol="₹") == "₹999.50"
