from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .domain import (
    AppliesTo,
    CartLine,
    ShippingBreakdownLine,
    ShippingRate,
    ShippingRule,
)
from .money import ZERO
from .totals import cart_subtotal


def rule_cost(rule: ShippingRule, cart_total: Decimal) -> Tuple[Decimal, bool]:
    """
    (стоимость, бесплатно ли). min_order_value у тарифа - порог бесплатной
    доставки: ниже порога тариф доступен по полной цене.
    """
    threshold = rule.min_order_value
    if threshold is not None and threshold > 0 and cart_total >= threshold:
        return ZERO, True
    return rule.amount, False


def _specific_rule(
    line: CartLine, product_rules: Sequence[ShippingRule], category_rules: Sequence[ShippingRule]
) -> Optional[ShippingRule]:
    """Тариф товара важнее тарифа категории"""
    by_product = next((r for r in product_rules if r.scope.matches(line.product_id, line.category_id)), None)
    if by_product is not None:
        return by_product
    return next((r for r in category_rules if r.scope.matches(line.product_id, line.category_id)), None)


def _names(lines: Sequence[CartLine]) -> str:
    return ", ".join(line.name for line in lines)


def calculate_shipping_options(
    cart: Sequence[CartLine], rules: Sequence[ShippingRule]
) -> Tuple[ShippingRate, ...]:
    """
    Варианты доставки для корзины ("аддитивная" доставка).

    Позиции с тарифом товара или категории "закреплены": их стоимость
    суммируется по группам и входит в каждый вариант. Для остальных
    позиций каждый общий тариф (ALL) даёт отдельный вариант.
    Наложенный платёж доступен, только если его принимают все тарифы варианта.
    """
    product_rules = [r for r in rules if r.scope.applies_to is AppliesTo.SPECIFIC_PRODUCTS]
    category_rules = [r for r in rules if r.scope.applies_to is AppliesTo.SPECIFIC_CATEGORIES]
    general_rules = [r for r in rules if r.scope.applies_to is AppliesTo.ALL]
    cart_total = cart_subtotal(cart)

    groups: Dict[str, Tuple[ShippingRule, List[CartLine]]] = {}
    general_lines: List[CartLine] = []
    for line in cart:
        rule = _specific_rule(line, product_rules, category_rules)
        if rule is None:
            general_lines.append(line)
        else:
            groups.setdefault(rule.id, (rule, []))[1].append(line)

    locked_cost = ZERO
    locked: List[ShippingBreakdownLine] = []
    for rule, lines in groups.values():
        cost, free = rule_cost(rule, cart_total)
        locked_cost += cost
        locked.append(
            ShippingBreakdownLine(
                name=rule.name,
                cost=cost,
                items=_names(lines),
                note="Free Shipping Applied" if free else "",
            )
        )
    locked_cod = all(rule.accepts_cod for rule, _ in groups.values())

    if not general_lines:
        if locked:
            return (
                ShippingRate(
                    id="combined_specific",
                    name="Shipping",
                    cost=locked_cost,
                    accepts_cod=locked_cod,
                    breakdown=tuple(locked),
                    is_auto_applied=True,
                ),
            )
        return (ShippingRate(id="free", name="Free Shipping", cost=ZERO),)

    if not general_rules:
        if not locked:
            return ()
        return (
            ShippingRate(
                id="combined_specific_partial",
                name="Shipping (Partial)",
                cost=locked_cost,
                accepts_cod=locked_cod,
                breakdown=tuple(locked)
                + (ShippingBreakdownLine(name="Standard Items", cost=ZERO, note="Rate not found"),),
                warning="Some items do not have eligible shipping rates.",
            ),
        )

    def option(rule: ShippingRule) -> ShippingRate:
        cost, _ = rule_cost(rule, cart_total)
        return ShippingRate(
            id=rule.id,
            name=rule.name,
            cost=locked_cost + cost,
            accepts_cod=locked_cod and rule.accepts_cod,
            breakdown=tuple(locked)
            + (ShippingBreakdownLine(name=rule.name, cost=cost, items=_names(general_lines)),),
        )

    return tuple(option(rule) for rule in general_rules)


def current_option(
    cart: Sequence[CartLine], rules: Sequence[ShippingRule], rate_id: Optional[str]
) -> Optional[ShippingRate]:
    """
    Выбранный вариант доставки, пересчитанный для текущей корзины.
    None - варианта с таким id для этой корзины больше нет.
    """
    if rate_id is None:
        return None
    return next((o for o in calculate_shipping_options(cart, rules) if o.id == rate_id), None)


def is_synthetic_rate_id(rate_id: Optional[str]) -> bool:
    """Сводные варианты ("free", "combined_specific") не ссылаются на тариф в базе"""
    return rate_id is None or len(rate_id) < 30 or "-" not in rate_id
