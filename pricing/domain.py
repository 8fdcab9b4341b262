from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import CheckoutError


# ============ Теги правил ============


class AppliesTo(Enum):
    ALL = "all"
    SPECIFIC_PRODUCTS = "specific_products"
    SPECIFIC_CATEGORIES = "specific_categories"

    @property
    def priority(self) -> int:
        """Чем меньше число, тем конкретнее правило"""
        match self:
            case AppliesTo.SPECIFIC_PRODUCTS:
                return 1
            case AppliesTo.SPECIFIC_CATEGORIES:
                return 2
            case AppliesTo.ALL:
                return 3


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class TaxType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class Applicability:
    """
    Область действия скидки/купона/налога/тарифа доставки.
    Списки исключений для ALL, списки включений для specific_*.
    """

    applies_to: AppliesTo = AppliesTo.ALL
    included_product_ids: Tuple[str, ...] = ()
    included_category_ids: Tuple[str, ...] = ()
    excluded_product_ids: Tuple[str, ...] = ()
    excluded_category_ids: Tuple[str, ...] = ()

    def excludes(self, product_id: str, category_id: Optional[str]) -> bool:
        return product_id in self.excluded_product_ids or (
            category_id is not None and category_id in self.excluded_category_ids
        )

    def matches(self, product_id: str, category_id: Optional[str]) -> bool:
        match self.applies_to:
            case AppliesTo.ALL:
                return not self.excludes(product_id, category_id)
            case AppliesTo.SPECIFIC_PRODUCTS:
                return product_id in self.included_product_ids
            case AppliesTo.SPECIFIC_CATEGORIES:
                return category_id is not None and category_id in self.included_category_ids


# ============ Каталог ============


@dataclass(frozen=True)
class Variant:
    id: str
    product_id: str
    combination: Tuple[Tuple[str, str], ...]  # (атрибут, значение)
    price: Optional[Decimal] = None
    use_base_price: bool = False
    compare_price: Optional[Decimal] = None
    stock: int = 0
    images: Tuple[str, ...] = ()

    @property
    def title(self) -> str:
        return " / ".join(value for _, value in self.combination)

    @property
    def attribute_keys(self) -> frozenset:
        return frozenset(key for key, _ in self.combination)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: Decimal
    category_id: Optional[str] = None
    compare_price: Optional[Decimal] = None
    stock: int = 0
    images: Tuple[str, ...] = ()
    variants: Tuple[Variant, ...] = ()


# ============ Правила магазина (только чтение) ============


@dataclass(frozen=True)
class DiscountRule:
    id: str
    name: str
    discount_type: DiscountType
    value: Decimal
    scope: Applicability = Applicability()
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    min_order_value: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    @property
    def is_gated(self) -> bool:
        """Есть порог минимальной суммы заказа (MOV)"""
        return self.min_order_value is not None and self.min_order_value > 0


@dataclass(frozen=True)
class Coupon:
    id: str
    store_id: str
    code: str
    discount_type: DiscountType
    value: Decimal
    scope: Applicability = Applicability()
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    min_order_value: Optional[Decimal] = None


@dataclass(frozen=True)
class TaxRule:
    id: str
    code: str
    type: TaxType
    rate: Decimal
    country: str
    is_active: bool = True
    apply_per_item: bool = True
    scope: Applicability = Applicability()


@dataclass(frozen=True)
class ShippingRule:
    """Тариф доставки из настроек магазина (до расчёта опций)"""

    id: str
    name: str
    amount: Decimal
    scope: Applicability = Applicability()
    min_order_value: Optional[Decimal] = None  # порог бесплатной доставки
    accepts_cod: bool = True


# ============ Корзина и доставка ============


@dataclass(frozen=True)
class CartLine:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    variant_id: Optional[str] = None
    image: Optional[str] = None
    compare_price: Optional[Decimal] = None
    max_stock: Optional[int] = None
    category_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.product_id, self.variant_id)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ShippingBreakdownLine:
    name: str
    cost: Decimal
    items: str = ""
    note: str = ""


@dataclass(frozen=True)
class ShippingRate:
    id: str
    name: str
    cost: Decimal
    accepts_cod: bool = True
    breakdown: Tuple[ShippingBreakdownLine, ...] = ()
    warning: Optional[str] = None
    is_auto_applied: bool = False


# ============ Результаты движка ============


@dataclass(frozen=True)
class PriceResult:
    final_price: Decimal
    compare_price: Optional[Decimal]
    has_discount: bool
    discount_pct: int = 0
    discount_label: Optional[str] = None


@dataclass(frozen=True)
class OrderDiscount:
    amount: Decimal
    name: Optional[str] = None
    rule_id: Optional[str] = None


@dataclass(frozen=True)
class CouponResult:
    is_valid: bool
    discount_amount: Decimal = Decimal("0")
    coupon: Optional[Coupon] = None
    error: Optional[CheckoutError] = None


@dataclass(frozen=True)
class TaxEntry:
    amount: Decimal
    rate: Decimal
    type: TaxType
    count: int
    apply_per_item: bool


@dataclass(frozen=True)
class TaxResult:
    breakdown: Dict[str, TaxEntry] = field(default_factory=dict)
    total: Decimal = Decimal("0")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_total: Decimal
    shipping_cost: Decimal
    tax_total: Decimal
    total: Decimal
    currency: str = "USD"
    tax_breakdown: Dict[str, TaxEntry] = field(default_factory=dict)
