import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from decimal import Decimal as D

import pytest

from pricing.domain import CartLine
from pricing.money import format_currency, round_money, round_percent, to_decimal
from pricing.totals import aggregate_totals, cart_subtotal


def test_cart_subtotal():
    cart = (CartLine("p1", "A", D("19.99"), 3), CartLine("p2", "B", D("0.01"), 1))
    assert cart_subtotal(cart) == D("59.98")
    assert cart_subtotal(()) == 0


def test_total_without_discount_is_sum_of_parts():
    totals = aggregate_totals(D("100"), D("0"), D("5"), D("20"))
    assert totals.total == D("125.00")
    assert totals.total == totals.subtotal + totals.shipping_cost + totals.tax_total


def test_rounding_happens_only_at_aggregation():
    """33.333 + 3.3333 = 36.6663 -> 36.67 (а не 33.33 + 3.33 = 36.66)"""
    totals = aggregate_totals(D("33.333"), D("0"), D("0"), D("3.3333"))
    assert totals.subtotal == D("33.33")
    assert totals.tax_total == D("3.33")
    assert totals.total == D("36.67")


def test_total_never_negative():
    totals = aggregate_totals(D("10"), D("50"), D("0"), D("0"))
    assert totals.total == D("0.00")


def test_currency_and_breakdown_passed_through():
    totals = aggregate_totals(D("1"), D("0"), D("0"), D("0"), currency="PKR")
    assert totals.currency == "PKR"
    assert totals.tax_breakdown == {}


# ============ Деньги ============


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, D("0")),
        ("", D("0")),
        ("abc", D("0")),
        ("NaN", D("0")),
        ("-Infinity", D("0")),
        ("sNaN", D("0")),
        (float("nan"), D("0")),
        (D("NaN"), D("0")),
        (19.99, D("19.99")),
        (5, D("5")),
        ("1.50", D("1.50")),
    ],
)
def test_to_decimal(raw, expected):
    assert to_decimal(raw) == expected


def test_half_up_rounding():
    assert round_money(D("0.005")) == D("0.01")
    assert round_money(D("2.675")) == D("2.68")
    assert round_percent(D("12.5")) == 13
    assert round_percent(D("12.49")) == 12


def test_format_currency():
    assert format_currency(D("1234"), "PKR") == "Rs 1,234.00"
    assert format_currency(D("9.5"), "USD") == "$9.50"
    assert format_currency("-3", "EUR") == "-€3.00"
    assert format_currency(D("1"), "CHF") == "CHF 1.00"
