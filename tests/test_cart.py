import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import logging
from datetime import datetime, timezone
from decimal import Decimal as D

import pytest

from pricing.cart import (
    add_to_cart,
    cart_count,
    clamp_quantity,
    dumps_cart,
    line_from_product,
    line_savings,
    loads_cart,
    remove_from_cart,
    storage_key,
    update_quantity,
)
from pricing.domain import Applicability, AppliesTo, CartLine, DiscountRule, DiscountType, Product, Variant

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def tee():
    return Product(
        id="p-tee",
        name="Classic Tee",
        price=D("25"),
        category_id="c-apparel",
        stock=40,
        images=("tee.jpg",),
        variants=(
            Variant("v-s", "p-tee", (("size", "S"), ("color", "White")), use_base_price=True, stock=10),
            Variant("v-m", "p-tee", (("size", "M"), ("color", "Black")), price=D("27"), stock=3, images=("black.jpg",)),
        ),
    )


def line(pid="p1", vid=None, qty=1, price="10", max_stock=None):
    return CartLine(pid, pid, D(price), qty, variant_id=vid, max_stock=max_stock)


def test_line_from_product_with_variant(tee):
    rule = DiscountRule(
        "tee-5", "Tee deal", DiscountType.FIXED_AMOUNT, D("5"),
        Applicability(AppliesTo.SPECIFIC_PRODUCTS, included_product_ids=("p-tee",)),
    )
    item = line_from_product(tee, tee.variants[1], (rule,), quantity=2, now=NOW)

    assert item.name == "Classic Tee - M / Black"
    assert item.unit_price == D("22")
    assert item.compare_price == D("27")
    assert item.image == "black.jpg"
    assert item.max_stock == 3
    assert item.key == ("p-tee", "v-m")
    assert item.category_id == "c-apparel"


def test_line_from_product_without_discount(tee):
    item = line_from_product(tee, tee.variants[0], now=NOW)
    assert item.unit_price == D("25")
    assert item.compare_price is None
    assert item.image == "tee.jpg"


def test_add_merges_same_product_and_variant():
    cart = add_to_cart((), line(qty=2))
    cart = add_to_cart(cart, line(qty=3))
    cart = add_to_cart(cart, line(vid="v2"))

    assert len(cart) == 2
    assert cart[0].quantity == 5
    assert cart_count(cart) == 6


def test_add_respects_max_stock():
    cart = add_to_cart((), line(qty=4, max_stock=5))
    cart = add_to_cart(cart, line(qty=4, max_stock=5))
    assert cart[0].quantity == 5


def test_clamp_quantity():
    assert clamp_quantity(7, 3) == 3
    assert clamp_quantity(7, 0) == 7
    assert clamp_quantity(7, None) == 7
    assert clamp_quantity(0, None) == 1


def test_update_and_remove():
    cart = (line("p1", qty=1), line("p2", vid="v1", qty=1))

    assert update_quantity(cart, "p1", None, 4)[0].quantity == 4
    assert update_quantity(cart, "p1", None, 0) == cart
    assert remove_from_cart(cart, "p2", "v1") == (cart[0],)
    assert remove_from_cart(cart, "p2") == cart


def test_operations_do_not_mutate():
    cart = (line(qty=1),)
    add_to_cart(cart, line(qty=2))
    assert cart[0].quantity == 1


def test_storage_key_per_store():
    assert storage_key("demo-store") == "shopping-cart-demo-store"
    assert storage_key() == "shopping-cart-default"
    assert storage_key("s1", "cart:") == "cart:s1"


def test_cache_round_trip_keeps_decimals():
    cart = (
        CartLine("p1", "Tee", D("19.99"), 2, variant_id="v1", compare_price=D("25.00"), max_stock=4, category_id="c1"),
        CartLine("p2", "Cap", D("5"), 1),
    )
    assert loads_cart(dumps_cart(cart)) == cart


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        '{"id": 1}',
        '[{"name": "no id"}]',
        "[1, 2]",
        '[{"id": "p1", "price": "NaN", "quantity": 1}]',
        '[{"id": "p1", "price": "Infinity", "quantity": 1}]',
        '[{"id": "p1", "price": NaN, "quantity": 1}]',
    ],
)
def test_broken_cache_gives_empty_cart(payload, caplog):
    with caplog.at_level(logging.ERROR):
        assert loads_cart(payload) == ()
    assert "cached cart" in caplog.text


def test_empty_cache():
    assert loads_cart(None) == ()
    assert loads_cart("") == ()


def test_line_savings():
    assert line_savings(CartLine("p1", "A", D("8"), 3, compare_price=D("10"))) == D("6")
    assert line_savings(CartLine("p1", "A", D("8"), 3)) == 0
