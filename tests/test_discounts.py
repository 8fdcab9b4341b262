import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from datetime import datetime, timezone
from decimal import Decimal as D

import pytest

from pricing.discounts import compose_discounts, resolve_order_discount, split_discounts
from pricing.domain import (
    Applicability,
    AppliesTo,
    Coupon,
    CouponResult,
    DiscountRule,
    DiscountType,
    OrderDiscount,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def gated(rule_id, discount_type, value, min_order, created=None, **kw):
    return DiscountRule(
        id=rule_id,
        name=rule_id,
        discount_type=discount_type,
        value=D(value),
        min_order_value=D(min_order),
        created_at=created,
        **kw,
    )


def coupon(discount_type=DiscountType.PERCENTAGE, value="20", scope=Applicability()):
    return Coupon(
        id="cp1", store_id="s1", code="SAVE20", discount_type=discount_type, value=D(value), scope=scope
    )


def applied(c, amount):
    return CouponResult(is_valid=True, discount_amount=D(amount), coupon=c)


# ============ Order Discount Resolver ============


def test_min_order_threshold_gates_the_rule():
    rules = (gated("spend-100", DiscountType.PERCENTAGE, "10", "100"),)
    assert resolve_order_discount(D("99.99"), rules, NOW).amount == 0

    result = resolve_order_discount(D("100.00"), rules, NOW)
    assert result.amount == D("10")
    assert result.name == "spend-100"
    assert result.rule_id == "spend-100"


def test_unconditional_rules_are_not_order_discounts():
    rules = (DiscountRule("summer", "Summer", DiscountType.PERCENTAGE, D("10")),)
    assert resolve_order_discount(D("500"), rules, NOW).amount == 0


def test_largest_amount_wins():
    rules = (
        gated("flat-25", DiscountType.FIXED_AMOUNT, "25", "100"),
        gated("pct-10", DiscountType.PERCENTAGE, "10", "100"),
    )
    result = resolve_order_discount(D("300"), rules, NOW)
    assert result.rule_id == "pct-10"
    assert result.amount == D("30")


def test_tie_goes_to_most_recently_created():
    older = gated(
        "flat-25", DiscountType.FIXED_AMOUNT, "25", "100",
        created=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    newer = gated(
        "pct-10", DiscountType.PERCENTAGE, "10", "100",
        created=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    assert resolve_order_discount(D("250"), (newer, older), NOW).rule_id == "pct-10"
    assert resolve_order_discount(D("250"), (older, newer), NOW).rule_id == "pct-10"


def test_tie_without_dates_is_deterministic():
    a = gated("a", DiscountType.FIXED_AMOUNT, "5", "10")
    b = gated("b", DiscountType.FIXED_AMOUNT, "5", "10")
    first = resolve_order_discount(D("50"), (a, b), NOW)
    second = resolve_order_discount(D("50"), (b, a), NOW)
    assert first == second


def test_inactive_order_rule_ignored():
    rules = (gated("off", DiscountType.PERCENTAGE, "10", "10", is_active=False),)
    assert resolve_order_discount(D("100"), rules, NOW).amount == 0


def test_order_discount_capped_at_subtotal():
    rules = (gated("big", DiscountType.FIXED_AMOUNT, "80", "50"),)
    assert resolve_order_discount(D("60"), rules, NOW).amount == D("60")


# ============ Discount Compositor ============


def test_percentage_all_coupon_compounds_on_remainder():
    """100 - 10% авто = 90; купон 20% от 90 = 18; всего 28"""
    order = OrderDiscount(amount=D("10.00"), name="auto")
    result = applied(coupon(), "20.00")

    assert split_discounts(D("100.00"), order, result) == (D("10.00"), D("18.00"))
    assert compose_discounts(D("100.00"), order, result) == D("28.00")


def test_fixed_coupon_uses_validator_amount():
    order = OrderDiscount(amount=D("10"))
    result = applied(coupon(DiscountType.FIXED_AMOUNT, "15"), "15")
    assert compose_discounts(D("100"), order, result) == D("25")


def test_scoped_percentage_coupon_uses_validator_amount():
    scoped = coupon(scope=Applicability(AppliesTo.SPECIFIC_CATEGORIES, included_category_ids=("c1",)))
    order = OrderDiscount(amount=D("10"))
    assert compose_discounts(D("100"), order, applied(scoped, "5")) == D("15")


def test_cap_reduces_coupon_not_automatic():
    order = OrderDiscount(amount=D("30"))
    result = applied(coupon(DiscountType.FIXED_AMOUNT, "40"), "40")
    automatic, coupon_share = split_discounts(D("50"), order, result)

    assert automatic == D("30")
    assert coupon_share == D("20")
    assert compose_discounts(D("50"), order, result) == D("50")


def test_invalid_or_missing_coupon_contributes_nothing():
    order = OrderDiscount(amount=D("10"))
    rejected = CouponResult(is_valid=False, coupon=coupon())
    assert compose_discounts(D("100"), order, None) == D("10")
    assert compose_discounts(D("100"), order, rejected) == D("10")


@pytest.mark.parametrize(
    "subtotal,auto,coupon_amount",
    [("0", "0", "0"), ("10", "50", "0"), ("100", "99", "30"), ("19.99", "0", "25")],
)
def test_discount_total_bounded_by_subtotal(subtotal, auto, coupon_amount):
    total = compose_discounts(
        D(subtotal),
        OrderDiscount(amount=D(auto)),
        applied(coupon(DiscountType.FIXED_AMOUNT, coupon_amount), coupon_amount),
    )
    assert D("0") <= total <= D(subtotal)
