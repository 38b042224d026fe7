"""Tests for display currency conversion"""
from datetime import datetime, timezone

import pytest

from billscan.currency import convert, convert_bill, format_price, get_rate
from billscan.models import RateSnapshot


@pytest.fixture
def usd_snapshot():
    return RateSnapshot(
        base="USD",
        asOfDate="2024-06-01",
        rates={"EUR": 0.5, "INR": 80.0},
        fetchedAt=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


def test_convert_same_currency_is_identity(usd_snapshot):
    assert convert(100, "USD", "USD", usd_snapshot) == 100
    assert convert(100, "USD", "USD", None) == 100


def test_convert_unsupported_target_is_noop(usd_snapshot):
    assert convert(100, "USD", "XYZ", usd_snapshot) == 100


def test_convert_without_snapshot_is_noop():
    assert convert(42.5, "USD", "EUR", None) == 42.5


def test_convert_multiplies_by_rate(usd_snapshot):
    assert convert(100, "USD", "EUR", usd_snapshot) == 50.0
    assert convert(2.5, "USD", "INR", usd_snapshot) == 200.0


def test_convert_ignores_snapshot_for_other_base(usd_snapshot):
    """Rates based on another currency can't convert this bill"""
    assert convert(100, "GBP", "EUR", usd_snapshot) == 100


def test_get_rate(usd_snapshot):
    assert get_rate("USD", "USD", None) == 1.0
    assert get_rate("USD", "EUR", usd_snapshot) == 0.5
    assert get_rate("USD", "JPY", usd_snapshot) is None


def test_convert_bill_builds_view_without_touching_bill(sample_bill):
    snapshot = RateSnapshot(
        base="INR",
        rates={"USD": 0.5},
        fetchedAt=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    before = sample_bill.model_copy(deep=True)

    view = convert_bill(sample_bill, "USD", snapshot)

    assert view.currency == "USD"
    assert view.baseCurrency == "INR"
    assert view.rate == 0.5
    assert view.converted
    assert [line.amount for line in view.items] == [250.0, 90.0]
    assert [line.unit_price for line in view.items] == [125.0, 30.0]
    assert [line.amount for line in view.tax] == [8.5, 8.5]
    assert view.totalAmount == 357.0
    assert sample_bill == before


def test_convert_bill_degrades_to_bill_currency(sample_bill):
    view = convert_bill(sample_bill, "USD", None)

    assert view.currency == "INR"
    assert view.rate is None
    assert not view.converted
    assert view.totalAmount == 714


@pytest.mark.parametrize("amount,code,expected", [
    (12.5, "USD", "$12.50"),
    (1234.567, "EUR", "€1,234.57"),
    (1500, "JPY", "¥1,500"),
    (9.99, "XYZ", "XYZ 9.99"),
])
def test_format_price(amount, code, expected):
    assert format_price(amount, code) == expected
