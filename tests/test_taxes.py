import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from decimal import Decimal as D

from pricing.domain import Applicability, AppliesTo, CartLine, TaxRule, TaxType
from pricing.taxes import compute_taxes, rules_for_country


def vat(rate="20", country="United Kingdom", **kw):
    return TaxRule("t-vat", "VAT", TaxType.PERCENTAGE, D(rate), country, **kw)


def eco(rate="2", country="All", per_item=True, **kw):
    return TaxRule("t-eco", "ECO", TaxType.FIXED, D(rate), country, apply_per_item=per_item, **kw)


CART = (CartLine("p1", "Tee", D("25"), 2, category_id="c-apparel"),)
MIXED = (
    CartLine("p1", "Tee", D("10"), 2, category_id="c-apparel"),
    CartLine("p2", "Cap", D("5"), 1, category_id="c-accessories"),
)


def test_percentage_tax_on_line_totals():
    result = compute_taxes(CART, "United Kingdom", (vat(),))
    assert result.total == D("10")
    assert result.breakdown["VAT"].amount == D("10")
    assert result.breakdown["VAT"].count == 2


def test_fixed_per_item_counts_units():
    """2 за единицу, 3 единицы -> 6"""
    result = compute_taxes(MIXED, "Germany", (eco(),))
    entry = result.breakdown["ECO"]
    assert entry.amount == D("6")
    assert entry.count == 3
    assert entry.apply_per_item


def test_fixed_not_per_item_applies_once():
    result = compute_taxes(MIXED, "Germany", (eco(per_item=False),))
    assert result.total == D("2")


def test_no_country_means_no_tax():
    assert compute_taxes(CART, None, (vat(country="All"),)).total == 0
    assert compute_taxes(CART, "", (vat(country="All"),)).breakdown == {}


def test_wildcard_and_country_rules_are_additive():
    rules = (vat(), eco(), vat(country="Germany"))
    result = compute_taxes(CART, "United Kingdom", rules)
    assert set(result.breakdown) == {"VAT", "ECO"}
    assert result.total == D("10") + D("4")


def test_custom_wildcard():
    rules = (eco(country="*"),)
    assert compute_taxes(CART, "Pakistan", rules, wildcard="*").total == D("4")
    assert compute_taxes(CART, "Pakistan", rules).total == 0


def test_inactive_rules_skipped():
    assert rules_for_country((vat(is_active=False),), "United Kingdom") == ()


def test_same_code_is_merged():
    rules = (
        TaxRule("a", "GST", TaxType.PERCENTAGE, D("10"), "Pakistan"),
        TaxRule("b", "GST", TaxType.PERCENTAGE, D("5"), "All"),
    )
    result = compute_taxes(CART, "Pakistan", rules)
    assert list(result.breakdown) == ["GST"]
    assert result.breakdown["GST"].amount == D("7.5")
    assert result.total == D("7.5")


def test_scope_and_exclusions():
    only_apparel = vat(scope=Applicability(AppliesTo.SPECIFIC_CATEGORIES, included_category_ids=("c-apparel",)))
    not_caps = eco(scope=Applicability(excluded_category_ids=("c-accessories",)))

    result = compute_taxes(MIXED, "United Kingdom", (only_apparel, not_caps))
    assert result.breakdown["VAT"].amount == D("4")
    assert result.breakdown["ECO"].amount == D("4")


def test_fixed_tax_without_qualifying_lines_is_skipped():
    rule = eco(per_item=False, scope=Applicability(AppliesTo.SPECIFIC_PRODUCTS, included_product_ids=("p9",)))
    assert compute_taxes(MIXED, "Germany", (rule,)).breakdown == {}


def test_amounts_are_not_rounded():
    cart = (CartLine("p1", "A", D("0.05"), 1),)
    result = compute_taxes(cart, "United Kingdom", (vat("7.25"),))
    assert result.total == D("0.003625")
