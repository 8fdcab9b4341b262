import logging
import re
from decimal import Decimal
from functools import reduce
from typing import Dict, Mapping, Optional, Sequence, Tuple

from pricing.coupons import CouponUsageLedger
from pricing.domain import CartLine, OrderTotals, ShippingRate, TaxEntry, TaxType
from pricing.errors import CheckoutError, ValidationError
from pricing.ftypes import Either
from pricing.money import ZERO, format_currency, round_money
from pricing.shipping import is_synthetic_rate_id

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REQUIRED_ADDRESS_FIELDS = (
    ("firstName", "First name is required"),
    ("lastName", "Last name is required"),
    ("address1", "Address is required"),
    ("city", "City is required"),
    ("zip", "Postal code is required"),
)


# ============ Адрес доставки ============


def validate_address(address: Mapping[str, str]) -> Tuple[ValidationError, ...]:
    """
    Ошибки по полям адреса (пустой кортеж - адрес валиден).
    Каждая ошибка показывается у своего поля и не блокирует остальные.
    """
    missing = tuple(
        ValidationError(message, field)
        for field, message in REQUIRED_ADDRESS_FIELDS
        if not str(address.get(field) or "").strip()
    )
    email = address.get("email")
    if email and not EMAIL_RE.match(email):
        return missing + (ValidationError("Invalid email address", "email"),)
    return missing


# ============ Запись заказа ============


def _money(amount: Decimal) -> str:
    return str(round_money(amount))


def rounded_tax_amounts(
    breakdown: Mapping[str, TaxEntry], tax_total: Optional[Decimal] = None
) -> Dict[str, Decimal]:
    """
    Суммы налогов в копейках. Если задан tax_total, разница округления
    относится на последнюю строку: строки счёта в сумме дают tax_total.
    """
    amounts = {code: round_money(entry.amount) for code, entry in breakdown.items()}
    if tax_total is None or not amounts:
        return amounts
    last = next(reversed(amounts))
    drift = round_money(tax_total) - sum(amounts.values(), ZERO)
    return {**amounts, last: amounts[last] + drift}


def serialize_tax_breakdown(
    breakdown: Mapping[str, TaxEntry], tax_total: Optional[Decimal] = None
) -> Dict[str, dict]:
    amounts = rounded_tax_amounts(breakdown, tax_total)
    return {
        code: {
            "amount": str(amounts[code]),
            "rate": str(entry.rate),
            "type": entry.type.value,
            "count": entry.count,
            "apply_per_item": entry.apply_per_item,
        }
        for code, entry in breakdown.items()
    }


def order_item(line: CartLine) -> dict:
    """Позиция заказа; original_price только если была скидка"""
    item = {
        "id": line.product_id,
        "variantId": line.variant_id,
        "name": line.name,
        "image": line.image,
        "quantity": line.quantity,
        "price": _money(line.unit_price),
    }
    if line.compare_price is not None and line.compare_price > line.unit_price:
        item["original_price"] = _money(line.compare_price)
    return item


def build_order_record(
    store_id: str,
    customer_email: str,
    address: Mapping[str, str],
    cart: Sequence[CartLine],
    totals: OrderTotals,
    shipping_rate: Optional[ShippingRate] = None,
    coupon_code: Optional[str] = None,
    payment_method: str = "manual",
) -> dict:
    """
    Запись заказа для хранилища и страницы подтверждения.
    Сводные варианты доставки (free, combined_*) не ссылаются на тариф.
    """
    rate_id = shipping_rate.id if shipping_rate is not None else None
    return {
        "store_id": store_id,
        "customer_email": customer_email,
        "customer_name": f"{address.get('firstName', '')} {address.get('lastName', '')}".strip(),
        "customer_phone": address.get("phone"),
        "shipping_address": dict(address),
        "coupon_code": coupon_code,
        "items": [order_item(line) for line in cart],
        "currency": totals.currency,
        "subtotal": _money(totals.subtotal),
        "shipping_cost": _money(totals.shipping_cost),
        "shipping_rate_id": None if is_synthetic_rate_id(rate_id) else rate_id,
        "discount_total": _money(totals.discount_total),
        "tax_total": _money(totals.tax_total),
        "tax_breakdown": serialize_tax_breakdown(totals.tax_breakdown, totals.tax_total),
        "total": _money(totals.total),
        "payment_method": payment_method,
        "status": "pending",
    }


def place_order(
    store_id: str,
    customer_email: str,
    address: Mapping[str, str],
    cart: Sequence[CartLine],
    totals: OrderTotals,
    shipping_rate: Optional[ShippingRate],
    coupon_code: Optional[str] = None,
    payment_method: str = "manual",
) -> Either[CheckoutError, dict]:
    """
    Проверяет адрес, корзину и способ оплаты, собирает запись заказа.
    Left(ValidationError) - первая ошибка; список по полям даёт validate_address.
    """
    if not cart:
        return Either.left(ValidationError("Your cart is empty.", "cart"))

    errors = validate_address({**address, "email": customer_email})
    if errors:
        return Either.left(errors[0])

    if shipping_rate is None:
        return Either.left(ValidationError("Please select a shipping method", "shipping"))

    if payment_method == "cod" and not shipping_rate.accepts_cod:
        return Either.left(
            ValidationError("Cash on delivery is not available for this shipping method.", "payment")
        )

    record = build_order_record(
        store_id, customer_email, address, cart, totals, shipping_rate, coupon_code, payment_method
    )
    logger.info("order placed: store=%s total=%s %s", store_id, record["total"], record["currency"])
    return Either.right(record)


# ============ Учёт использований купонов ============


def record_usages(
    ledger: CouponUsageLedger, placed: Sequence[Tuple[str, Optional[str]]]
) -> CouponUsageLedger:
    """(order_id, coupon_id) успешно размещённых заказов -> новый учёт"""
    return reduce(
        lambda acc, pair: acc.increment(*pair) if pair[1] else acc,
        placed,
        ledger,
    )


# ============ Счёт (invoice) ============


def tax_label(code: str, entry: TaxEntry, currency: str = "USD") -> str:
    """
    Подпись строки налога в счёте:
    VAT (20%), ECO ($2.00 fixed), BAG (3 x $0.10), BAG (Rs 0.10 ea)
    """
    rate = format_currency(entry.rate, currency)
    match entry.type:
        case TaxType.PERCENTAGE:
            return f"{code} ({entry.rate.normalize():f}%)"
        case TaxType.FIXED if not entry.apply_per_item:
            return f"{code} ({rate} fixed)"
        case TaxType.FIXED if entry.count > 1:
            return f"{code} ({entry.count} x {rate})"
        case TaxType.FIXED:
            return f"{code} ({rate} ea)"
    return code


def invoice_lines(totals: OrderTotals) -> Tuple[Tuple[str, Decimal], ...]:
    """Строки итогов счёта в порядке показа"""
    lines: Tuple[Tuple[str, Decimal], ...] = (("Subtotal", totals.subtotal),)
    if totals.discount_total > 0:
        lines += (("Discount", -totals.discount_total),)
    lines += (("Shipping", totals.shipping_cost),)
    amounts = rounded_tax_amounts(totals.tax_breakdown, totals.tax_total)
    lines += tuple(
        (tax_label(code, entry, totals.currency), amounts[code])
        for code, entry in totals.tax_breakdown.items()
    )
    return lines + (("Total", totals.total),)
