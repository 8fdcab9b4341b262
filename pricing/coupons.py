import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Tuple

from .domain import AppliesTo, CartLine, Coupon, CouponResult
from .errors import (
    CheckoutError,
    IneligibleError,
    NotFoundError,
    TransientFetchError,
    ValidationError,
)
from .ftypes import Either, Maybe
from .money import ZERO, format_currency
from .rules import as_utc, discount_amount, utc_now

logger = logging.getLogger(__name__)

# (store_id, code) -> купон или None
CouponLookup = Callable[[str, str], Awaitable[Optional[Coupon]]]


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip()


def find_coupon(coupons: Iterable[Coupon], store_id: str, code: str) -> Maybe[Coupon]:
    """Поиск купона магазина по коду без учёта регистра"""
    wanted = normalize_code(code).casefold()
    found = next(
        (
            c
            for c in coupons
            if c.store_id == store_id and c.code.strip().casefold() == wanted
        ),
        None,
    )
    return Maybe.from_optional(found)


# ============ Проверки купона (по порядку, до первой ошибки) ============


def _check_active(coupon: Coupon) -> Either[CheckoutError, Coupon]:
    if not coupon.is_active:
        return Either.left(IneligibleError("This coupon is no longer active.", "coupon"))
    return Either.right(coupon)


def _check_window(now: datetime) -> Callable[[Coupon], Either[CheckoutError, Coupon]]:
    def check(coupon: Coupon) -> Either[CheckoutError, Coupon]:
        if coupon.starts_at is not None and now < as_utc(coupon.starts_at):
            return Either.left(IneligibleError("This coupon is not yet valid.", "coupon"))
        if coupon.ends_at is not None and now > as_utc(coupon.ends_at):
            return Either.left(IneligibleError("This coupon has expired.", "coupon"))
        return Either.right(coupon)

    return check


def _check_usage(coupon: Coupon) -> Either[CheckoutError, Coupon]:
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return Either.left(
            IneligibleError("This coupon has reached its usage limit.", "coupon")
        )
    return Either.right(coupon)


def _check_min_order(
    subtotal: Decimal, currency: str
) -> Callable[[Coupon], Either[CheckoutError, Coupon]]:
    def check(coupon: Coupon) -> Either[CheckoutError, Coupon]:
        threshold = coupon.min_order_value
        if threshold is not None and threshold > 0 and subtotal < threshold:
            return Either.left(
                IneligibleError(
                    f"This coupon requires a minimum order of {format_currency(threshold, currency)}.",
                    "coupon",
                )
            )
        return Either.right(coupon)

    return check


# ============ Область действия ============


def eligible_lines(coupon: Coupon, cart: Sequence[CartLine]) -> Tuple[CartLine, ...]:
    return tuple(
        line for line in cart if coupon.scope.matches(line.product_id, line.category_id)
    )


def _scope_error(coupon: Coupon) -> IneligibleError:
    match coupon.scope.applies_to:
        case AppliesTo.ALL:
            message = "This coupon does not apply to the items in your cart."
        case AppliesTo.SPECIFIC_PRODUCTS:
            message = "This coupon applies to specific products not in your cart."
        case AppliesTo.SPECIFIC_CATEGORIES:
            message = "This coupon applies to specific collections not in your cart."
    return IneligibleError(message, "coupon")


def coupon_amount(
    coupon: Coupon, cart: Sequence[CartLine], subtotal: Decimal
) -> Either[CheckoutError, Decimal]:
    """
    Процент - от суммы подходящих позиций, фиксированная сумма -
    один раз на заказ. Итог не больше subtotal корзины.
    """
    lines = eligible_lines(coupon, cart)
    if not lines and cart:
        return Either.left(_scope_error(coupon))

    eligible_total = sum((line.line_total for line in lines), ZERO)
    amount = discount_amount(coupon.discount_type, coupon.value, eligible_total)
    return Either.right(min(max(amount, ZERO), subtotal))


# ============ Валидация ============


def evaluate_coupon(
    coupon: Coupon,
    cart: Sequence[CartLine],
    subtotal: Decimal,
    now: Optional[datetime] = None,
    currency: str = "USD",
) -> CouponResult:
    """
    Чистая проверка уже найденного купона: статус, окно, лимит, MOV, область.
    Используется и при вводе кода, и при каждом пересчёте корзины.
    """
    moment = as_utc(now or utc_now())
    result = (
        _check_active(coupon)
        .bind(_check_window(moment))
        .bind(_check_usage)
        .bind(_check_min_order(subtotal, currency))
        .bind(lambda c: coupon_amount(c, cart, subtotal))
    )
    return result.fold(
        lambda error: CouponResult(is_valid=False, coupon=coupon, error=error),
        lambda amount: CouponResult(is_valid=True, discount_amount=amount, coupon=coupon),
    )


def _invalid(error: CheckoutError) -> CouponResult:
    return CouponResult(is_valid=False, error=error)


async def validate_coupon(
    code: str,
    store_id: str,
    cart: Sequence[CartLine],
    subtotal: Decimal,
    lookup: CouponLookup,
    now: Optional[datetime] = None,
    timeout: float = 5.0,
    currency: str = "USD",
) -> CouponResult:
    """
    Проверка кода, введённого покупателем.
    Lookup ограничен таймаутом; сбой хранилища - TransientFetchError,
    исключения наружу не выходят.
    """
    cleaned = normalize_code(code)
    if not cleaned:
        return _invalid(ValidationError("Please enter a coupon code.", "coupon"))

    try:
        coupon = await asyncio.wait_for(lookup(store_id, cleaned), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("coupon lookup timed out (store=%s, code=%s)", store_id, cleaned)
        return _invalid(TransientFetchError("Error validating coupon.", "coupon"))
    except Exception:
        logger.exception("coupon lookup failed (store=%s, code=%s)", store_id, cleaned)
        return _invalid(TransientFetchError("Error validating coupon.", "coupon"))

    # хранилище может вернуть запись с другим регистром или пробелами
    if coupon is None or coupon.code.strip().casefold() != cleaned.casefold():
        return _invalid(NotFoundError("Invalid coupon code.", "coupon"))

    return evaluate_coupon(coupon, cart, subtotal, now, currency)


# ============ Учёт использований ============


@dataclass(frozen=True)
class CouponUsageLedger:
    """
    Счётчики использования купонов. Одна запись на (заказ, купон):
    повторная отправка того же заказа счётчик не увеличивает.
    """

    counts: Tuple[Tuple[str, int], ...] = ()
    applied: frozenset = frozenset()

    def count(self, coupon_id: str) -> int:
        return dict(self.counts).get(coupon_id, 0)

    def increment(self, order_id: str, coupon_id: str) -> "CouponUsageLedger":
        if (order_id, coupon_id) in self.applied:
            return self
        counts = dict(self.counts)
        counts[coupon_id] = counts.get(coupon_id, 0) + 1
        logger.info("coupon %s used by order %s", coupon_id, order_id)
        return CouponUsageLedger(
            counts=tuple(sorted(counts.items())),
            applied=self.applied | {(order_id, coupon_id)},
        )

    def with_usage(self, coupon: Coupon) -> Coupon:
        """Купон с учётом использований, записанных после загрузки"""
        extra = self.count(coupon.id)
        return replace(coupon, usage_count=coupon.usage_count + extra) if extra else coupon
