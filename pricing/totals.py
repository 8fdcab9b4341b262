from decimal import Decimal
from functools import reduce
from typing import Dict, Optional, Sequence

from .domain import CartLine, OrderTotals, TaxEntry
from .money import ZERO, round_money


def cart_subtotal(cart: Sequence[CartLine]) -> Decimal:
    """Сумма позиций по текущим ценам единицы (без округления)"""
    return reduce(lambda acc, line: acc + line.line_total, cart, ZERO)


def aggregate_totals(
    subtotal: Decimal,
    discount_total: Decimal,
    shipping_cost: Decimal,
    tax_total: Decimal,
    currency: str = "USD",
    tax_breakdown: Optional[Dict[str, TaxEntry]] = None,
) -> OrderTotals:
    """
    Итоги заказа. total = max(0, subtotal + доставка + налог - скидка).
    Округление до копеек происходит только здесь; total считается
    из неокруглённых слагаемых.
    """
    total = max(ZERO, subtotal + shipping_cost + tax_total - discount_total)
    return OrderTotals(
        subtotal=round_money(subtotal),
        discount_total=round_money(discount_total),
        shipping_cost=round_money(shipping_cost),
        tax_total=round_money(tax_total),
        total=round_money(total),
        currency=currency,
        tax_breakdown=dict(tax_breakdown or {}),
    )
