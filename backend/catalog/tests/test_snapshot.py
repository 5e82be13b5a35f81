from decimal import Decimal

import pytest

from catalog.services.snapshot import InvalidDiscount, InvalidPriceInput, build_snapshot


def test_ten_percent_discount_rounds_half_up():
    snapshot = build_snapshot(1999, 10)

    assert snapshot.total_cents == 1799
    assert snapshot.discount_cents == 200
    assert snapshot.base_price_cents == 1999
    assert snapshot.discount_percent == Decimal("10")
    assert snapshot.term_months == 1


@pytest.mark.parametrize("price", [0, 1, 99, 1999, 123456789])
def test_zero_discount_returns_base_price(price):
    assert build_snapshot(price, 0).total_cents == price


def test_missing_discount_means_full_price():
    assert build_snapshot(1500, None).total_cents == 1500


def test_multi_month_term_multiplies_before_discount():
    snapshot = build_snapshot(1000, Decimal("15.5"), term_months=3)

    # 3000 * 0.845 = 2535
    assert snapshot.total_cents == 2535
    assert snapshot.discount_cents == 465


def test_exact_half_cent_rounds_up():
    # 5 * 0.9 = 4.5
    assert build_snapshot(5, 10).total_cents == 5


def test_full_discount_is_free():
    assert build_snapshot(4999, 100).total_cents == 0


@pytest.mark.parametrize("discount", [-1, Decimal("100.01"), "abc", True])
def test_discount_out_of_range_is_rejected(discount):
    with pytest.raises(InvalidDiscount):
        build_snapshot(1000, discount)


@pytest.mark.parametrize("price", [-1, 10.5, "100", None])
def test_base_price_must_be_non_negative_integer(price):
    with pytest.raises(InvalidPriceInput):
        build_snapshot(price, 0)


def test_term_months_must_be_positive():
    with pytest.raises(InvalidPriceInput):
        build_snapshot(1000, 0, term_months=0)
