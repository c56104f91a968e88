from datetime import datetime
from decimal import Decimal

import pytest

from tabsera.models.contract import SettlementFrequency
from tabsera.utils.settlement_math import (
    collection_figures,
    collection_rate_pct,
    convert_minor_units,
    due_date_for,
    is_aligned_period,
    is_past_due,
    last_closed_period,
    period_bounds,
    period_label,
    split_revenue,
)


# ===== SPLIT =====

def test_split_never_loses_a_cent():
    for gross in range(0, 1001):
        for share in range(0, 101):
            tabsera, center = split_revenue(gross, share)
            assert tabsera + center == gross
            assert tabsera == gross * share // 100
            assert center >= 0


def test_split_large_amounts():
    for gross in (10**9 + 7, 2**53 + 1, 999_999_999_999):
        for share in (1, 33, 50, 67, 99):
            tabsera, center = split_revenue(gross, share)
            assert tabsera + center == gross


def test_split_odd_remainder_goes_to_center():
    assert split_revenue(101, 33) == (33, 68)


def test_split_even():
    assert split_revenue(490000, 50) == (245000, 245000)


def test_split_extremes():
    assert split_revenue(12345, 0) == (0, 12345)
    assert split_revenue(12345, 100) == (12345, 0)


@pytest.mark.parametrize("gross,share", [(-1, 50), (100, -1), (100, 101)])
def test_split_rejects_bad_input(gross, share):
    with pytest.raises(ValueError):
        split_revenue(gross, share)


# ===== COLLECTION =====

def test_collection_rate_rounds_half_up():
    assert collection_rate_pct(426000, 490000) == 87
    assert collection_rate_pct(1, 200) == 1
    assert collection_rate_pct(3, 200) == 2


def test_collection_rate_with_no_revenue_is_full():
    assert collection_rate_pct(0, 0) == 100


def test_collection_rate_bounds():
    assert collection_rate_pct(0, 500) == 0
    assert collection_rate_pct(500, 500) == 100


def test_collection_figures():
    assert collection_figures(490000, 426000) == (426000, 64000, 87)


@pytest.mark.parametrize("collected", [-1, 101])
def test_collection_figures_reject_out_of_range(collected):
    with pytest.raises(ValueError):
        collection_figures(100, collected)


# ===== CURRENCY =====

def test_convert_minor_units():
    # 57,000.00 SOS at 570 SOS per USD
    assert convert_minor_units(5700000, Decimal("570"), Decimal("1")) == 10000
    assert convert_minor_units(10000, Decimal("1"), Decimal("129.5")) == 1295000


def test_convert_rounds_half_even():
    assert convert_minor_units(5, Decimal("2"), Decimal("1")) == 2
    assert convert_minor_units(7, Decimal("2"), Decimal("1")) == 4


def test_convert_rejects_non_positive_rates():
    with pytest.raises(ValueError):
        convert_minor_units(100, Decimal("0"), Decimal("1"))


# ===== CALENDAR =====

def test_monthly_bounds():
    assert period_bounds(SettlementFrequency.MONTHLY, datetime(2026, 1, 31, 23, 59)) == (
        datetime(2026, 1, 1), datetime(2026, 2, 1)
    )
    assert period_bounds(SettlementFrequency.MONTHLY, datetime(2026, 12, 10)) == (
        datetime(2026, 12, 1), datetime(2027, 1, 1)
    )


def test_quarterly_bounds():
    assert period_bounds(SettlementFrequency.QUARTERLY, datetime(2026, 5, 20)) == (
        datetime(2026, 4, 1), datetime(2026, 7, 1)
    )
    assert period_bounds(SettlementFrequency.QUARTERLY, datetime(2026, 11, 1)) == (
        datetime(2026, 10, 1), datetime(2027, 1, 1)
    )


def test_last_closed_period():
    assert last_closed_period(SettlementFrequency.MONTHLY, datetime(2026, 2, 1)) == (
        datetime(2026, 1, 1), datetime(2026, 2, 1)
    )
    assert last_closed_period(SettlementFrequency.MONTHLY, datetime(2026, 1, 3)) == (
        datetime(2025, 12, 1), datetime(2026, 1, 1)
    )
    assert last_closed_period(SettlementFrequency.QUARTERLY, datetime(2026, 4, 2)) == (
        datetime(2026, 1, 1), datetime(2026, 4, 1)
    )


def test_is_aligned_period():
    assert is_aligned_period(SettlementFrequency.MONTHLY, datetime(2026, 1, 1), datetime(2026, 2, 1))
    assert not is_aligned_period(SettlementFrequency.MONTHLY, datetime(2026, 1, 1), datetime(2026, 1, 15))
    assert not is_aligned_period(SettlementFrequency.QUARTERLY, datetime(2026, 1, 1), datetime(2026, 2, 1))
    assert is_aligned_period(SettlementFrequency.QUARTERLY, datetime(2026, 1, 1), datetime(2026, 4, 1))


def test_period_label():
    assert period_label(SettlementFrequency.MONTHLY, datetime(2026, 1, 1)) == "January 2026"
    assert period_label(SettlementFrequency.QUARTERLY, datetime(2026, 4, 1)) == "Q2 2026"


def test_due_date_is_in_month_after_period():
    assert due_date_for(datetime(2026, 2, 1), 15) == datetime(2026, 2, 15)
    assert due_date_for(datetime(2027, 1, 1), 1) == datetime(2027, 1, 1)


def test_due_date_clips_to_month_length():
    assert due_date_for(datetime(2026, 2, 1), 31) == datetime(2026, 2, 28)
    assert due_date_for(datetime(2028, 2, 1), 30) == datetime(2028, 2, 29)
    assert due_date_for(datetime(2026, 4, 1), 31) == datetime(2026, 4, 30)


def test_quarterly_due_date():
    assert due_date_for(datetime(2026, 4, 1), 15) == datetime(2026, 4, 15)


@pytest.mark.parametrize("due_day", [0, 32])
def test_due_date_rejects_bad_day(due_day):
    with pytest.raises(ValueError):
        due_date_for(datetime(2026, 2, 1), due_day)


def test_past_due_only_after_the_due_day():
    due = datetime(2026, 2, 15)
    assert not is_past_due(due, datetime(2026, 2, 14, 12, 0))
    assert not is_past_due(due, datetime(2026, 2, 15, 23, 59, 59))
    assert is_past_due(due, datetime(2026, 2, 16, 0, 0))
