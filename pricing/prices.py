from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from .domain import DiscountRule, PriceResult, Product, Variant
from .money import HUNDRED, ZERO, round_percent
from .rules import discount_amount, is_live


@dataclass(frozen=True)
class PricedEntity:
    """То, что видит резолвер цены: товар или конкретный вариант"""

    product_id: str
    price: Decimal
    category_id: Optional[str] = None
    compare_price: Optional[Decimal] = None


# ============ Базовая цена (наследование от товара) ============


def base_price_of(product: Product, variant: Optional[Variant] = None) -> Decimal:
    """Вариант с use_base_price (или без своей цены) берёт цену товара"""
    if variant is None or variant.use_base_price or variant.price is None:
        return product.price
    return variant.price


def base_compare_price_of(
    product: Product, variant: Optional[Variant] = None
) -> Optional[Decimal]:
    if variant is None or variant.use_base_price:
        return product.compare_price
    return variant.compare_price


def priced_entity(product: Product, variant: Optional[Variant] = None) -> PricedEntity:
    return PricedEntity(
        product_id=product.id,
        price=base_price_of(product, variant),
        category_id=product.category_id,
        compare_price=base_compare_price_of(product, variant),
    )


# ============ Price Resolver ============


def applicable_rules(
    entity: PricedEntity, rules: Iterable[DiscountRule], now: Optional[datetime] = None
) -> Tuple[DiscountRule, ...]:
    """
    Безусловные правила для карточки товара: активные, в окне действия,
    без порога MOV и совпадающие по области.
    Правило с порогом на витрине не показываем - скидка не гарантирована.
    """
    return tuple(
        rule
        for rule in rules
        if is_live(rule, now)
        and not rule.is_gated
        and rule.scope.matches(entity.product_id, entity.category_id)
    )


def best_rule(
    entity: PricedEntity, candidates: Tuple[DiscountRule, ...]
) -> Tuple[Optional[DiscountRule], Decimal]:
    """
    Берём только самый приоритетный ярус (товары > категории > все),
    внутри яруса - правило с наибольшей экономией в деньгах.
    """
    if not candidates:
        return None, ZERO

    top_priority = min(rule.scope.applies_to.priority for rule in candidates)
    tier = (r for r in candidates if r.scope.applies_to.priority == top_priority)

    winner: Optional[DiscountRule] = None
    best_savings = ZERO
    for rule in tier:
        savings = discount_amount(rule.discount_type, rule.value, entity.price)
        if savings > best_savings:
            winner, best_savings = rule, savings
    return winner, best_savings


def _spread_pct(compare_price: Decimal, final_price: Decimal) -> int:
    if compare_price <= 0:
        return 0
    return round_percent((compare_price - final_price) / compare_price * HUNDRED)


def resolve_price(
    entity: PricedEntity, rules: Iterable[DiscountRule], now: Optional[datetime] = None
) -> PriceResult:
    """
    Итоговая цена единицы товара с учётом автоматических скидок.
    Если ни одно правило не сработало, compare_price > price
    остаётся статической скидкой "для витрины".
    """
    price = entity.price
    compare = entity.compare_price or ZERO

    rule, savings = best_rule(entity, applicable_rules(entity, rules, now))

    if rule is not None and savings > 0:
        final_price = max(ZERO, price - savings)
        anchor = compare if compare > price else price
        return PriceResult(
            final_price=final_price,
            compare_price=anchor,
            has_discount=True,
            discount_pct=_spread_pct(anchor, final_price),
            discount_label=rule.name,
        )

    if compare > price:
        return PriceResult(
            final_price=price,
            compare_price=compare,
            has_discount=True,
            discount_pct=_spread_pct(compare, price),
        )

    return PriceResult(
        final_price=price,
        compare_price=entity.compare_price,
        has_discount=False,
    )
