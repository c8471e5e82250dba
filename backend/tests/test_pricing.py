import pytest

from pricing import calculate_retail_price, price_breakdown, price_for_margin, price_for_strategy


def test_default_markup_rounds_to_99():
    assert calculate_retail_price(10.0) == 13.99
    assert calculate_retail_price(21.5) == 29.99


def test_price_never_drops_below_cost():
    assert calculate_retail_price(10.4, markup_percent=0) == 10.99


def test_zero_cost_is_unpriced():
    assert calculate_retail_price(0) == 0.0
    assert price_for_margin(None, 0.3) == 0.0


def test_negative_markup_rejected():
    with pytest.raises(ValueError):
        calculate_retail_price(10, markup_percent=-5)


def test_margin_pricing_covers_fees():
    assert price_for_margin(10.0, 0.45) == 22.99
    assert price_for_strategy(10.0, "standard") == 22.99
    with pytest.raises(ValueError):
        price_for_margin(10.0, 0.95)


def test_breakdown_reports_profit():
    result = price_breakdown(10.0, 19.99)

    assert result["marketplace_fees"] == 2.2
    assert result["profit"] == 7.79
    assert result["margin_percent"] == 39.0
