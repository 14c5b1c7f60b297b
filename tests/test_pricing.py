from decimal import Decimal

import pytest

from storefront.services.pricing import DEFAULT_RATES, StoreRates, compute_totals, load_rates, parse_rate

D = Decimal


def test_free_shipping_at_threshold():
    totals = compute_totals([(D("600"), 2)])
    assert totals.subtotal == D("1200.00")
    assert totals.shipping == D("0.00")
    assert totals.tax == D("60.00")
    assert totals.total == D("1260.00")


def test_flat_shipping_below_threshold():
    totals = compute_totals([(D("500"), 1)])
    assert totals.shipping == D("50.00")
    assert totals.tax == D("25.00")
    assert totals.total == D("575.00")


def test_threshold_is_inclusive():
    assert compute_totals([(D("1000"), 1)]).shipping == D("0.00")
    assert compute_totals([(D("999.99"), 1)]).shipping == D("50.00")


def test_tax_rounds_half_up():
    rates = StoreRates(tax_rate=D("5"), shipping_rate=D("0"), free_shipping_threshold=D("0"))
    # 0.05 * 10.10 = 0.505
    assert compute_totals([(D("10.10"), 1)], rates).tax == D("0.51")


@pytest.mark.parametrize("lines,discount", [
    ([(D("19.99"), 3), (D("0.01"), 7)], D("0")),
    ([(D("333.33"), 3)], D("10.50")),
    ([(D("1500"), 1)], D("5000")),
    ([], D("0")),
])
def test_total_equals_parts(lines, discount):
    t = compute_totals(lines, DEFAULT_RATES, discount)
    assert t.total == t.subtotal + t.tax + t.shipping - t.discount
    assert t.total >= 0
    for amount in (t.subtotal, t.tax, t.shipping, t.discount, t.total):
        assert amount == amount.quantize(D("0.01"))


def test_discount_never_makes_total_negative():
    t = compute_totals([(D("100"), 1)], DEFAULT_RATES, D("99999"))
    assert t.total == D("0.00")
    assert t.discount == t.subtotal + t.tax + t.shipping


@pytest.mark.parametrize("raw", ["abc", "", "-5", "NaN", "1,000"])
def test_malformed_setting_falls_back(raw):
    assert parse_rate(raw, D("7")) == D("7")


def test_missing_setting_uses_default():
    assert parse_rate(None, D("50")) == D("50")


def test_load_rates_reads_settings(db, set_setting):
    set_setting("tax_rate", "12")
    set_setting("shipping_rate", "not-a-number")
    rates = load_rates(db)
    assert rates.tax_rate == D("12")
    assert rates.shipping_rate == DEFAULT_RATES.shipping_rate
    assert rates.free_shipping_threshold == DEFAULT_RATES.free_shipping_threshold
