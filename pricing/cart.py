import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from .domain import CartLine, DiscountRule, Product, Variant
from .money import parse_decimal
from .prices import priced_entity, resolve_price

logger = logging.getLogger(__name__)

Cart = Tuple[CartLine, ...]


# ============ Позиция из каталога ============


def line_from_product(
    product: Product,
    variant: Optional[Variant] = None,
    rules: Iterable[DiscountRule] = (),
    quantity: int = 1,
    now: Optional[datetime] = None,
) -> CartLine:
    """Позиция корзины в момент add-to-cart: цена уже со скидкой"""
    price = resolve_price(priced_entity(product, variant), rules, now)
    images = (variant.images if variant is not None else ()) or product.images
    name = f"{product.name} - {variant.title}" if variant is not None and variant.title else product.name
    stock = variant.stock if variant is not None else product.stock

    return CartLine(
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        name=name,
        image=images[0] if images else None,
        unit_price=price.final_price,
        compare_price=price.compare_price if price.has_discount else None,
        quantity=max(1, quantity),
        max_stock=stock,
        category_id=product.category_id,
    )


# ============ Операции с корзиной (чистые функции) ============


def clamp_quantity(quantity: int, max_stock: Optional[int]) -> int:
    if max_stock is not None and max_stock > 0:
        return max(1, min(quantity, max_stock))
    return max(1, quantity)


def _with_quantity(line: CartLine, quantity: int) -> CartLine:
    return CartLine(
        product_id=line.product_id,
        variant_id=line.variant_id,
        name=line.name,
        image=line.image,
        unit_price=line.unit_price,
        compare_price=line.compare_price,
        quantity=clamp_quantity(quantity, line.max_stock),
        max_stock=line.max_stock,
        category_id=line.category_id,
    )


def add_to_cart(cart: Cart, line: CartLine) -> Cart:
    """
    Новая корзина с добавленной позицией.
    Тот же товар + вариант суммирует количество (не больше max_stock).
    """
    if line.quantity <= 0:
        return cart

    existing = next((item for item in cart if item.key == line.key), None)
    if existing is None:
        return cart + (_with_quantity(line, line.quantity),)

    return tuple(
        _with_quantity(item, item.quantity + line.quantity) if item.key == line.key else item
        for item in cart
    )


def update_quantity(
    cart: Cart, product_id: str, variant_id: Optional[str], quantity: int
) -> Cart:
    """Количество меньше 1 игнорируется - для удаления есть remove_from_cart"""
    if quantity < 1:
        return cart
    key = (product_id, variant_id)
    return tuple(_with_quantity(item, quantity) if item.key == key else item for item in cart)


def remove_from_cart(cart: Cart, product_id: str, variant_id: Optional[str] = None) -> Cart:
    key = (product_id, variant_id)
    return tuple(filter(lambda item: item.key != key, cart))


def cart_count(cart: Cart) -> int:
    return sum(line.quantity for line in cart)


# ============ Локальный кэш корзины ============


def storage_key(store_key: str = "default", prefix: str = "shopping-cart-") -> str:
    """Корзины разных магазинов не смешиваются"""
    return f"{prefix}{store_key}"


def _line_to_dict(line: CartLine) -> dict:
    return {
        "id": line.product_id,
        "variantId": line.variant_id,
        "name": line.name,
        "image": line.image,
        "price": str(line.unit_price),
        "comparePrice": None if line.compare_price is None else str(line.compare_price),
        "quantity": line.quantity,
        "maxStock": line.max_stock,
        "category_id": line.category_id,
    }


def _line_from_dict(raw: dict) -> CartLine:
    compare = raw.get("comparePrice")
    max_stock = raw.get("maxStock")
    price = parse_decimal(raw.get("price"))
    if price is None:
        raise ValueError(f"cached price is not a number: {raw.get('price')!r}")
    return CartLine(
        product_id=str(raw["id"]),
        variant_id=None if raw.get("variantId") is None else str(raw["variantId"]),
        name=str(raw.get("name", "")),
        image=raw.get("image"),
        unit_price=price,
        compare_price=None if compare is None else parse_decimal(compare),
        quantity=max(1, int(raw.get("quantity", 1))),
        max_stock=None if max_stock is None else int(max_stock),
        category_id=None if raw.get("category_id") is None else str(raw["category_id"]),
    )


def dumps_cart(cart: Cart) -> str:
    return json.dumps([_line_to_dict(line) for line in cart], ensure_ascii=False)


def loads_cart(payload: Optional[str]) -> Cart:
    """
    Корзина из кэша. Битые данные - пустая корзина (с записью в лог):
    кэш лишь копия, цены всё равно пересчитает reconcile_cart.
    """
    if not payload:
        return ()
    try:
        raw = json.loads(payload)
        return tuple(_line_from_dict(item) for item in raw)
    except (ValueError, TypeError, KeyError, AttributeError):
        logger.error("failed to parse cached cart, starting empty")
        return ()


def line_savings(line: CartLine) -> Decimal:
    """Экономия по позиции относительно зачёркнутой цены"""
    if line.compare_price is None or line.compare_price <= line.unit_price:
        return Decimal("0")
    return (line.compare_price - line.unit_price) * line.quantity
