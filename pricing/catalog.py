import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .coupons import CouponUsageLedger, find_coupon
from .domain import (
    Applicability,
    AppliesTo,
    Coupon,
    DiscountRule,
    DiscountType,
    Product,
    ShippingRule,
    TaxRule,
    TaxType,
    Variant,
)
from .errors import CheckoutError, ValidationError
from .ftypes import Either, first_left
from .money import to_decimal
from .rules import is_live

logger = logging.getLogger(__name__)


# ============ Разбор строк хранилища ============


def _ids(raw: Optional[Iterable]) -> Tuple[str, ...]:
    """id в JSONB бывают и числами, и строками - сравниваем как строки"""
    return tuple(str(x) for x in (raw or ()))


def _when(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


def _optional_money(raw):
    return None if raw is None or raw == "" else to_decimal(raw)


def parse_scope(row: Mapping) -> Applicability:
    return Applicability(
        applies_to=AppliesTo(row.get("applies_to", "all")),
        included_product_ids=_ids(row.get("included_product_ids")),
        included_category_ids=_ids(row.get("included_category_ids")),
        excluded_product_ids=_ids(row.get("excluded_product_ids")),
        excluded_category_ids=_ids(row.get("excluded_category_ids")),
    )


def parse_variant(row: Mapping, product_id: str) -> Variant:
    return Variant(
        id=str(row["id"]),
        product_id=product_id,
        combination=tuple((str(k), str(v)) for k, v in (row.get("combination") or {}).items()),
        price=_optional_money(row.get("price")),
        use_base_price=bool(row.get("use_base_price", False)),
        compare_price=_optional_money(row.get("compare_price")),
        stock=int(row.get("stock", 0)),
        images=tuple(row.get("images") or ()),
    )


def parse_product(row: Mapping) -> Product:
    product_id = str(row["id"])
    return Product(
        id=product_id,
        name=str(row.get("name", "")),
        price=to_decimal(row.get("price")),
        category_id=None if row.get("category_id") is None else str(row["category_id"]),
        compare_price=_optional_money(row.get("compare_price")),
        stock=int(row.get("stock", 0)),
        images=tuple(row.get("images") or ()),
        variants=tuple(parse_variant(v, product_id) for v in row.get("variants") or ()),
    )


def parse_discount(row: Mapping) -> DiscountRule:
    return DiscountRule(
        id=str(row["id"]),
        name=str(row.get("name", "")),
        discount_type=DiscountType(row["discount_type"]),
        value=to_decimal(row.get("value")),
        scope=parse_scope(row),
        is_active=bool(row.get("is_active", True)),
        starts_at=_when(row.get("starts_at")),
        ends_at=_when(row.get("ends_at")),
        min_order_value=_optional_money(row.get("min_order_value")),
        created_at=_when(row.get("created_at")),
    )


def parse_coupon(row: Mapping) -> Coupon:
    limit = row.get("usage_limit")
    return Coupon(
        id=str(row["id"]),
        store_id=str(row["store_id"]),
        code=str(row["code"]),
        discount_type=DiscountType(row["discount_type"]),
        value=to_decimal(row.get("value")),
        scope=parse_scope(row),
        is_active=bool(row.get("is_active", True)),
        starts_at=_when(row.get("starts_at")),
        ends_at=_when(row.get("ends_at")),
        usage_limit=None if limit is None else int(limit),
        usage_count=int(row.get("usage_count", 0)),
        min_order_value=_optional_money(row.get("min_order_value")),
    )


def parse_tax(row: Mapping) -> TaxRule:
    # в старых записях ставка лежит в "value"
    return TaxRule(
        id=str(row["id"]),
        code=str(row["code"]),
        type=TaxType(row.get("type", "percentage")),
        rate=to_decimal(row.get("rate", row.get("value"))),
        country=str(row.get("country", "All")),
        is_active=bool(row.get("is_active", True)),
        apply_per_item=bool(row.get("apply_per_item", True)),
        scope=parse_scope(row),
    )


def parse_shipping(row: Mapping) -> ShippingRule:
    return ShippingRule(
        id=str(row["id"]),
        name=str(row.get("name", "")),
        amount=to_decimal(row.get("amount")),
        scope=parse_scope(row),
        min_order_value=_optional_money(row.get("min_order_value")),
        accepts_cod=row.get("accepts_cod") is not False,
    )


# ============ Инварианты каталога ============


def validate_variants(product: Product) -> Either[CheckoutError, Product]:
    """
    Комбинация каждого варианта должна задавать значение
    для всех атрибутов, встречающихся у соседних вариантов.
    """
    keys = frozenset().union(*(v.attribute_keys for v in product.variants))

    def check(variant: Variant) -> Either[CheckoutError, Variant]:
        missing = sorted(keys - variant.attribute_keys)
        if missing:
            return Either.left(
                ValidationError(
                    f"Variant '{variant.id}' of '{product.id}' has no value for: {', '.join(missing)}",
                    "variants",
                )
            )
        return Either.right(variant)

    return first_left(check(v) for v in product.variants).map(lambda _: product)


# ============ Демо-магазин ============


def valid_products(products: Iterable[Product]) -> Tuple[Product, ...]:
    """Товары с несогласованными вариантами не попадают в витрину"""

    def keep(product: Product) -> bool:
        checked = validate_variants(product)
        if checked.is_left:
            logger.warning("skipping product %s: %s", product.id, checked.value.message)
        return checked.is_right

    return tuple(filter(keep, products))


@dataclass(frozen=True)
class StoreData:
    store_id: str
    currency: str
    products: Tuple[Product, ...]
    discounts: Tuple[DiscountRule, ...]
    coupons: Tuple[Coupon, ...]
    taxes: Tuple[TaxRule, ...]
    shipping: Tuple[ShippingRule, ...]
    countries: Tuple[str, ...]


def load_seed(path: str) -> StoreData:
    """Загружает seed.json магазина в иммутабельные структуры"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return StoreData(
        store_id=str(data.get("store_id", "default")),
        currency=str(data.get("currency", "USD")),
        products=valid_products(map(parse_product, data.get("products", []))),
        discounts=tuple(map(parse_discount, data.get("discounts", []))),
        coupons=tuple(map(parse_coupon, data.get("coupons", []))),
        taxes=tuple(map(parse_tax, data.get("taxes", []))),
        shipping=tuple(map(parse_shipping, data.get("shipping_rates", []))),
        countries=tuple(data.get("countries", [])),
    )


class InMemoryStore:
    """
    Хранилище магазина в памяти: реализует запросы каталога, скидок
    и купонов, которые в проде идут в бэкенд.
    latency - искусственная задержка (для проверки таймаутов).
    """

    def __init__(
        self,
        products: Sequence[Product] = (),
        discounts: Sequence[DiscountRule] = (),
        coupons: Sequence[Coupon] = (),
        latency: float = 0.0,
    ):
        self.products: Dict[str, Product] = {p.id: p for p in products}
        self.discounts = tuple(discounts)
        self.coupons = tuple(coupons)
        self.latency = latency
        self.ledger = CouponUsageLedger()

    @classmethod
    def from_seed(cls, data: StoreData, latency: float = 0.0) -> "InMemoryStore":
        return cls(data.products, data.discounts, data.coupons, latency)

    async def _wait(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    async def fetch_products(self, product_ids: Tuple[str, ...]) -> Mapping[str, Product]:
        await self._wait()
        return {pid: self.products[pid] for pid in product_ids if pid in self.products}

    async def fetch_discounts(self) -> Sequence[DiscountRule]:
        """Только активные правила, как их отдаёт бэкенд"""
        await self._wait()
        return tuple(d for d in self.discounts if d.is_active)

    async def find_coupon(self, store_id: str, code: str) -> Optional[Coupon]:
        await self._wait()
        return find_coupon(self.coupons, store_id, code).map(self.ledger.with_usage).get_or_else(None)

    async def record_usage(self, order_id: str, coupon_id: str) -> None:
        """+1 к счётчику купона; повтор для того же заказа не считается"""
        await self._wait()
        self.ledger = self.ledger.increment(order_id, coupon_id)


def live_discounts(discounts: Iterable[DiscountRule], now: Optional[datetime] = None) -> Tuple[DiscountRule, ...]:
    return tuple(d for d in discounts if is_live(d, now))
