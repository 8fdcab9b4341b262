import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Optional, Sequence, Tuple

from .cart import Cart, clamp_quantity, line_from_product
from .domain import CartLine, DiscountRule, Product, Variant
from .errors import TransientFetchError
from .ftypes import Either, Maybe

logger = logging.getLogger(__name__)

# product ids -> {id: Product}; отсутствующих товаров в ответе просто нет
CatalogLookup = Callable[[Tuple[str, ...]], Awaitable[Mapping[str, Product]]]
# активные скидки магазина
DiscountLookup = Callable[[], Awaitable[Sequence[DiscountRule]]]


def find_variant(product: Product, variant_id: Optional[str]) -> Maybe[Variant]:
    return Maybe.from_optional(next((v for v in product.variants if v.id == variant_id), None))


def reconcile_line(
    line: CartLine,
    products: Mapping[str, Product],
    rules: Sequence[DiscountRule],
    now: Optional[datetime] = None,
) -> Maybe[CartLine]:
    """
    Свежая версия позиции по живому каталогу.
    Nothing - товар (или его вариант) удалён, позицию надо выкинуть.
    """
    product = products.get(line.product_id)
    if product is None:
        return Maybe.nothing()

    if line.variant_id is None:
        variant: Optional[Variant] = None
    else:
        found = find_variant(product, line.variant_id)
        if found.is_none():
            return Maybe.nothing()
        variant = found.value

    stock = variant.stock if variant is not None else product.stock
    return Maybe.some(
        line_from_product(
            product,
            variant,
            rules,
            quantity=clamp_quantity(line.quantity, stock),
            now=now,
        )
    )


def reconcile_with(
    cart: Sequence[CartLine],
    products: Mapping[str, Product],
    rules: Sequence[DiscountRule],
    now: Optional[datetime] = None,
) -> Cart:
    """Синхронная часть сверки: данные уже загружены"""
    fresh = (reconcile_line(line, products, rules, now) for line in cart)
    return tuple(m.value for m in fresh if m.is_some())


async def _fetch(
    product_ids: Tuple[str, ...],
    catalog_lookup: CatalogLookup,
    discount_lookup: DiscountLookup,
) -> Tuple[Mapping[str, Product], Sequence[DiscountRule]]:
    # запросы идут по очереди: не больше одного активного запроса за проход
    products = await catalog_lookup(product_ids)
    rules = await discount_lookup()
    return products, tuple(rules)


async def reconcile_cart(
    cart: Sequence[CartLine],
    catalog_lookup: CatalogLookup,
    discount_lookup: DiscountLookup,
    now: Optional[datetime] = None,
    timeout: float = 5.0,
) -> Either[TransientFetchError, Cart]:
    """
    Пересчёт корзины из кэша по актуальному каталогу и скидкам.

    Запускается при активации магазина (или вручную). Кэш - только копия,
    цена, зачёркнутая цена, название и картинка всегда берутся из каталога.
    Сбой или таймаут загрузки - Left(TransientFetchError), корзина
    вызывающего остаётся как была, повтор - решение вызывающего.
    """
    if not cart:
        return Either.right(())

    product_ids = tuple(dict.fromkeys(line.product_id for line in cart))
    try:
        products, rules = await asyncio.wait_for(
            _fetch(product_ids, catalog_lookup, discount_lookup), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("cart reconciliation timed out after %.1fs", timeout)
        return Either.left(
            TransientFetchError("Could not refresh your cart. Please try again.")
        )
    except Exception:
        logger.exception("cart reconciliation fetch failed")
        return Either.left(
            TransientFetchError("Could not refresh your cart. Please try again.")
        )

    fresh = reconcile_with(cart, products, rules, now)
    dropped = len(cart) - len(fresh)
    if dropped:
        logger.info("dropped %d cart line(s) no longer in catalog", dropped)
    return Either.right(fresh)
