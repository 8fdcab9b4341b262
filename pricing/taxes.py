from decimal import Decimal
from functools import reduce
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .domain import CartLine, TaxEntry, TaxResult, TaxRule, TaxType
from .money import ZERO, percent_of


def rules_for_country(
    rules: Iterable[TaxRule], country: Optional[str], wildcard: str = "All"
) -> Tuple[TaxRule, ...]:
    """
    Активные налоги страны доставки плюс налоги с маской "All".
    Пока страна не выбрана, налогов нет.
    """
    if not country:
        return ()
    return tuple(
        r for r in rules if r.is_active and (r.country == country or r.country == wildcard)
    )


def qualifying_lines(rule: TaxRule, cart: Sequence[CartLine]) -> Tuple[CartLine, ...]:
    """Исключения налога действуют для любой области, не только для ALL"""
    return tuple(
        line
        for line in cart
        if rule.scope.matches(line.product_id, line.category_id)
        and not rule.scope.excludes(line.product_id, line.category_id)
    )


def tax_entry(rule: TaxRule, cart: Sequence[CartLine]) -> Optional[TaxEntry]:
    """Вклад одного налога; None если ни одна позиция не подходит"""
    lines = qualifying_lines(rule, cart)
    units = sum(line.quantity for line in lines)
    if not lines:
        return None

    match rule.type:
        case TaxType.PERCENTAGE:
            basis = sum((line.line_total for line in lines), ZERO)
            amount = percent_of(basis, rule.rate)
        case TaxType.FIXED if rule.apply_per_item:
            amount = rule.rate * units
        case TaxType.FIXED:
            amount = rule.rate

    return TaxEntry(
        amount=amount,
        rate=rule.rate,
        type=rule.type,
        count=units,
        apply_per_item=rule.apply_per_item,
    )


def _merge(breakdown: Dict[str, TaxEntry], code: str, entry: TaxEntry) -> Dict[str, TaxEntry]:
    """Налоги с одинаковым кодом суммируются в одну строку"""
    previous = breakdown.get(code)
    if previous is None:
        return {**breakdown, code: entry}
    merged = TaxEntry(
        amount=previous.amount + entry.amount,
        rate=previous.rate,
        type=previous.type,
        count=previous.count + entry.count,
        apply_per_item=previous.apply_per_item,
    )
    return {**breakdown, code: merged}


def compute_taxes(
    cart: Sequence[CartLine],
    country: Optional[str],
    rules: Iterable[TaxRule],
    wildcard: str = "All",
) -> TaxResult:
    """
    Разбивка налогов по коду и общая сумма.
    Налоги складываются независимо друг от друга, база - цены позиций
    до скидок заказа. Суммы не округляются.
    """

    def accumulate(breakdown: Dict[str, TaxEntry], rule: TaxRule) -> Dict[str, TaxEntry]:
        entry = tax_entry(rule, cart)
        return breakdown if entry is None else _merge(breakdown, rule.code, entry)

    breakdown = reduce(accumulate, rules_for_country(rules, country, wildcard), {})
    total: Decimal = sum((e.amount for e in breakdown.values()), ZERO)
    return TaxResult(breakdown=breakdown, total=total)
