import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from datetime import datetime, timezone
from decimal import Decimal as D

import pytest

from pricing.cart import dumps_cart
from pricing.catalog import InMemoryStore
from pricing.domain import Applicability, AppliesTo, CartLine, DiscountRule, DiscountType, Product, Variant
from pricing.errors import TransientFetchError
from pricing.reconcile import reconcile_cart, reconcile_line

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def products():
    return (
        Product("p-tee", "Classic Tee", D("25"), "c-apparel", stock=40, variants=(
            Variant("v-s", "p-tee", (("size", "S"),), use_base_price=True, stock=10),
            Variant("v-m", "p-tee", (("size", "M"),), price=D("27"), stock=2),
        )),
        Product("p-cap", "Logo Cap", D("18"), "c-accessories", stock=0),
    )


@pytest.fixture
def sale():
    return DiscountRule(
        "tee-week", "Tee Week", DiscountType.PERCENTAGE, D("20"),
        Applicability(AppliesTo.SPECIFIC_CATEGORIES, included_category_ids=("c-apparel",)),
    )


def stale(pid, vid=None, price="1", qty=1, name="old name"):
    return CartLine(pid, name, D(price), qty, variant_id=vid, image="old.jpg", compare_price=D("99"))


@pytest.mark.asyncio
async def test_cached_price_is_replaced_by_catalog(products, sale):
    store = InMemoryStore(products, (sale,))
    cart = (stale("p-tee", "v-s"), stale("p-cap", qty=3))

    result = await reconcile_cart(cart, store.fetch_products, store.fetch_discounts, NOW)

    assert result.is_right
    tee, cap = result.value
    assert tee.unit_price == D("20")
    assert tee.compare_price == D("25")
    assert tee.name == "Classic Tee - S"
    assert cap.unit_price == D("18")
    assert cap.compare_price is None
    assert cap.quantity == 3


@pytest.mark.asyncio
async def test_missing_product_or_variant_is_dropped(products):
    store = InMemoryStore(products)
    cart = (stale("p-gone"), stale("p-tee", "v-xl"), stale("p-tee", "v-m"))

    result = await reconcile_cart(cart, store.fetch_products, store.fetch_discounts, NOW)

    assert [line.key for line in result.value] == [("p-tee", "v-m")]
    assert result.value[0].unit_price == D("27")


@pytest.mark.asyncio
async def test_quantity_clamped_to_stock(products):
    store = InMemoryStore(products)
    result = await reconcile_cart((stale("p-tee", "v-m", qty=5),), store.fetch_products, store.fetch_discounts, NOW)
    assert result.value[0].quantity == 2


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(products, sale):
    store = InMemoryStore(products, (sale,))
    cart = (stale("p-tee", "v-s", qty=2), stale("p-tee", "v-m"), stale("p-cap"))

    once = await reconcile_cart(cart, store.fetch_products, store.fetch_discounts, NOW)
    twice = await reconcile_cart(once.value, store.fetch_products, store.fetch_discounts, NOW)

    assert twice.value == once.value
    assert dumps_cart(twice.value) == dumps_cart(once.value)


@pytest.mark.asyncio
async def test_empty_cart_skips_fetch():
    async def never(*args):
        raise AssertionError("should not fetch")

    result = await reconcile_cart((), never, never, NOW)
    assert result.is_right
    assert result.value == ()


@pytest.mark.asyncio
async def test_timeout_returns_transient_error(products):
    store = InMemoryStore(products, latency=0.5)
    result = await reconcile_cart((stale("p-cap"),), store.fetch_products, store.fetch_discounts, NOW, timeout=0.01)

    assert result.is_left
    assert isinstance(result.value, TransientFetchError)
    assert result.value.retryable


@pytest.mark.asyncio
async def test_lookup_failure_returns_transient_error():
    async def broken(ids):
        raise ConnectionError("db down")

    async def rules():
        return ()

    result = await reconcile_cart((stale("p-cap"),), broken, rules, NOW)
    assert result.is_left
    assert result.value.message == "Could not refresh your cart. Please try again."


def test_reconcile_line_for_product_without_variants(products):
    fresh = reconcile_line(stale("p-cap", price="3"), {"p-cap": products[1]}, (), NOW)
    assert fresh.get_or_else(None).unit_price == D("18")
    assert reconcile_line(stale("p-cap"), {}, (), NOW).is_none()
