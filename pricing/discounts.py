from datetime import datetime, timezone
from decimal import Decimal
from functools import reduce
from typing import Iterable, Optional, Tuple

from .domain import AppliesTo, CouponResult, DiscountRule, DiscountType, OrderDiscount
from .money import ZERO, percent_of
from .rules import discount_amount, is_live

NO_DISCOUNT = OrderDiscount(amount=ZERO)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ============ Order Discount Resolver ============


def _created_key(rule: DiscountRule) -> Tuple[datetime, str]:
    created = rule.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created, rule.id)


def resolve_order_discount(
    subtotal: Decimal, rules: Iterable[DiscountRule], now: Optional[datetime] = None
) -> OrderDiscount:
    """
    Лучшая автоматическая скидка на весь заказ ("купи на X - получи Y").
    Кандидаты - только правила с порогом MOV, который subtotal достиг.
    При равной сумме выигрывает последнее созданное правило.
    """
    eligible = tuple(
        rule
        for rule in rules
        if is_live(rule, now) and rule.is_gated and subtotal >= rule.min_order_value
    )
    if not eligible:
        return NO_DISCOUNT

    def amount_of(rule: DiscountRule) -> Decimal:
        return min(discount_amount(rule.discount_type, rule.value, subtotal), subtotal)

    def pick(best: DiscountRule, rule: DiscountRule) -> DiscountRule:
        key_best = (amount_of(best), _created_key(best))
        key_rule = (amount_of(rule), _created_key(rule))
        return rule if key_rule > key_best else best

    winner = reduce(pick, eligible)
    amount = amount_of(winner)
    if amount <= 0:
        return NO_DISCOUNT
    return OrderDiscount(amount=amount, name=winner.name, rule_id=winner.id)


# ============ Discount Compositor ============


def split_discounts(
    subtotal: Decimal,
    order_discount: OrderDiscount,
    coupon_result: Optional[CouponResult] = None,
) -> Tuple[Decimal, Decimal]:
    """
    (автоматическая скидка, доля купона).

    Автоматическая скидка применяется первой и никогда не уменьшается.
    Процентный купон на ALL считается от остатка после неё,
    остальные купоны берут сумму, посчитанную валидатором.
    Если сумма превышает subtotal, урезается доля купона.
    """
    automatic = min(max(order_discount.amount, ZERO), subtotal)

    if coupon_result is None or not coupon_result.is_valid or coupon_result.coupon is None:
        return automatic, ZERO

    coupon = coupon_result.coupon
    remaining = subtotal - automatic
    if (
        coupon.discount_type is DiscountType.PERCENTAGE
        and coupon.scope.applies_to is AppliesTo.ALL
    ):
        coupon_share = percent_of(remaining, coupon.value)
    else:
        coupon_share = coupon_result.discount_amount

    coupon_share = min(max(coupon_share, ZERO), remaining)
    return automatic, coupon_share


def compose_discounts(
    subtotal: Decimal,
    order_discount: OrderDiscount,
    coupon_result: Optional[CouponResult] = None,
) -> Decimal:
    """Итоговая скидка заказа: 0 <= результат <= subtotal"""
    automatic, coupon_share = split_discounts(subtotal, order_discount, coupon_result)
    return automatic + coupon_share
