from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional, Protocol, Sequence, Tuple

from .cart import Cart
from .config import DEFAULT_SETTINGS, Settings
from .coupons import evaluate_coupon, validate_coupon
from .discounts import NO_DISCOUNT, split_discounts, resolve_order_discount
from .domain import (
    CartLine,
    Coupon,
    CouponResult,
    DiscountRule,
    OrderDiscount,
    OrderTotals,
    Product,
    ShippingRate,
    ShippingRule,
    TaxResult,
    TaxRule,
)
from .errors import TransientFetchError
from .ftypes import Either
from .money import ZERO
from .reconcile import reconcile_cart
from .shipping import calculate_shipping_options, current_option
from .taxes import compute_taxes
from .totals import aggregate_totals, cart_subtotal


class StoreBackend(Protocol):
    """Коллаборатор хранилища: каталог, скидки, купоны и их использования"""

    async def fetch_products(self, product_ids: Tuple[str, ...]) -> Mapping[str, Product]: ...

    async def fetch_discounts(self) -> Sequence[DiscountRule]: ...

    async def find_coupon(self, store_id: str, code: str) -> Optional[Coupon]: ...

    async def record_usage(self, order_id: str, coupon_id: str) -> None: ...


@dataclass(frozen=True)
class CheckoutState:
    """Всё, от чего зависят итоги. Любое изменение - новый объект"""

    store_id: str
    cart: Cart = ()
    discount_rules: Tuple[DiscountRule, ...] = ()
    tax_rules: Tuple[TaxRule, ...] = ()
    shipping_rules: Tuple[ShippingRule, ...] = ()
    country: Optional[str] = None
    shipping_rate: Optional[ShippingRate] = None
    coupon: Optional[Coupon] = None
    currency: str = "USD"


@dataclass(frozen=True)
class CheckoutSummary:
    totals: OrderTotals
    order_discount: OrderDiscount
    coupon_result: Optional[CouponResult]
    automatic_discount: Decimal
    coupon_discount: Decimal
    taxes: TaxResult
    shipping_rate: Optional[ShippingRate] = None


def recompute(
    state: CheckoutState, now: Optional[datetime] = None, settings: Settings = DEFAULT_SETTINGS
) -> CheckoutSummary:
    """
    Явный пересчёт итогов: вызывается после любого изменения состояния
    (корзина, страна, доставка, купон). Чистая функция, идемпотентна.
    Применённый купон проверяется заново - subtotal мог измениться.
    """
    cart = state.cart
    subtotal = cart_subtotal(cart)

    order_discount = resolve_order_discount(subtotal, state.discount_rules, now)
    coupon_result = (
        evaluate_coupon(state.coupon, cart, subtotal, now, state.currency)
        if state.coupon is not None
        else None
    )
    automatic, coupon_share = split_discounts(subtotal, order_discount, coupon_result)

    taxes = compute_taxes(cart, state.country, state.tax_rules, settings.tax_wildcard)
    # выбранный вариант пересчитывается: порог бесплатной доставки зависит от корзины
    rate_id = state.shipping_rate.id if state.shipping_rate is not None else None
    shipping_rate = current_option(cart, state.shipping_rules, rate_id)
    shipping_cost = shipping_rate.cost if shipping_rate is not None else ZERO

    totals = aggregate_totals(
        subtotal=subtotal,
        discount_total=automatic + coupon_share,
        shipping_cost=shipping_cost,
        tax_total=taxes.total,
        currency=state.currency,
        tax_breakdown=taxes.breakdown,
    )
    return CheckoutSummary(
        totals=totals,
        order_discount=order_discount if automatic > 0 else NO_DISCOUNT,
        coupon_result=coupon_result,
        automatic_discount=automatic,
        coupon_discount=coupon_share,
        taxes=taxes,
        shipping_rate=shipping_rate,
    )


class CheckoutService:
    """Фасад сессии оформления заказа поверх хранилища магазина"""

    def __init__(self, backend: StoreBackend, settings: Settings = DEFAULT_SETTINGS):
        self.backend = backend
        self.settings = settings

    def start(self, store_id: str, cart: Sequence[CartLine] = (), **rules) -> CheckoutState:
        return CheckoutState(
            store_id=store_id,
            cart=tuple(cart),
            currency=self.settings.currency,
            **rules,
        )

    async def refresh_cart(
        self, state: CheckoutState, now: Optional[datetime] = None
    ) -> Either[TransientFetchError, CheckoutState]:
        """Сверка корзины с каталогом; при сбое состояние не меняется"""
        return (
            await reconcile_cart(
                state.cart,
                self.backend.fetch_products,
                self.backend.fetch_discounts,
                now=now,
                timeout=self.settings.fetch_timeout,
            )
        ).map(lambda fresh: replace(state, cart=fresh))

    async def apply_coupon(
        self, state: CheckoutState, code: str, now: Optional[datetime] = None
    ) -> Tuple[CheckoutState, CouponResult]:
        """Невалидный купон не трогает уже применённый"""
        result = await validate_coupon(
            code,
            state.store_id,
            state.cart,
            cart_subtotal(state.cart),
            self.backend.find_coupon,
            now=now,
            timeout=self.settings.fetch_timeout,
            currency=state.currency,
        )
        if result.is_valid:
            return replace(state, coupon=result.coupon), result
        return state, result

    def remove_coupon(self, state: CheckoutState) -> CheckoutState:
        return replace(state, coupon=None)

    def set_country(self, state: CheckoutState, country: Optional[str]) -> CheckoutState:
        return replace(state, country=country)

    def shipping_options(self, state: CheckoutState) -> Tuple[ShippingRate, ...]:
        return calculate_shipping_options(state.cart, state.shipping_rules)

    def select_shipping(self, state: CheckoutState, rate_id: str) -> CheckoutState:
        """Неизвестный id - выбор сбрасывается"""
        return replace(state, shipping_rate=current_option(state.cart, state.shipping_rules, rate_id))

    async def record_coupon_usage(self, state: CheckoutState, order_id: str) -> None:
        """
        Учёт использования купона размещённым заказом.
        Повтор для того же заказа счётчик не меняет.
        """
        if state.coupon is not None:
            await self.backend.record_usage(order_id, state.coupon.id)

    def summary(self, state: CheckoutState, now: Optional[datetime] = None) -> CheckoutSummary:
        return recompute(state, now, self.settings)
