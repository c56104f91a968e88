"""Settlement arithmetic and period calendar.

Pure functions only: every input the calculation depends on (contract terms,
amounts, dates) is passed in explicitly. Nothing here reads settings or the
database, so a settlement can be reproduced from its inputs alone.

Rules:
- Money is integer minor units (cents).
- The operator's share is floored; the remainder goes to the center, so
  tabsera_amount + center_amount == gross_revenue exactly.
- Collection rate is rounded half-up and is 100 when nothing was billed.
- Periods are half-open [start, end) in naive UTC, aligned to calendar
  months or calendar quarters.
- A due date is day N of the month after the period's last day, clipped to
  that month's length.
"""

import calendar
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Tuple

from tabsera.models.contract import SettlementFrequency

MONTHS_PER_PERIOD = {
    SettlementFrequency.MONTHLY: 1,
    SettlementFrequency.QUARTERLY: 3,
}


def split_revenue(gross_revenue: int, tabsera_share_pct: int) -> Tuple[int, int]:
    """Split gross revenue into (tabsera_amount, center_amount)."""
    if gross_revenue < 0:
        raise ValueError(f"gross_revenue must be non-negative, got {gross_revenue}")
    if not 0 <= tabsera_share_pct <= 100:
        raise ValueError(f"tabsera_share_pct must be within 0..100, got {tabsera_share_pct}")

    tabsera_amount = (gross_revenue * tabsera_share_pct) // 100
    center_amount = gross_revenue - tabsera_amount
    return tabsera_amount, center_amount


def collection_rate_pct(collected_amount: int, gross_revenue: int) -> int:
    """Percentage of gross revenue already cleared, 0..100."""
    if gross_revenue <= 0:
        return 100
    rate = (Decimal(collected_amount) * 100 / Decimal(gross_revenue)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(0, min(100, int(rate)))


def collection_figures(gross_revenue: int, collected_amount: int) -> Tuple[int, int, int]:
    """Return (collected_amount, pending_amount, collection_rate_pct)."""
    if not 0 <= collected_amount <= gross_revenue:
        raise ValueError(
            f"collected_amount {collected_amount} outside 0..{gross_revenue}"
        )
    pending_amount = gross_revenue - collected_amount
    return collected_amount, pending_amount, collection_rate_pct(collected_amount, gross_revenue)


def convert_minor_units(amount: int, from_rate: Decimal, to_rate: Decimal) -> int:
    """
    Convert an amount between two currencies quoted against the same base.

    Rates are units of currency per one unit of the base currency; both
    currencies are assumed to use two minor-unit digits.
    """
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError("exchange rates must be positive")
    converted = Decimal(amount) / from_rate * to_rate
    return int(converted.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


# ===== CALENDAR =====

def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def period_bounds(frequency: SettlementFrequency, day: datetime) -> Tuple[datetime, datetime]:
    """Return the [start, end) period of the given frequency containing `day`."""
    step = MONTHS_PER_PERIOD[SettlementFrequency(frequency)]
    first_month = ((day.month - 1) // step) * step + 1
    start = datetime(day.year, first_month, 1)
    end_year, end_month = add_months(day.year, first_month, step)
    return start, datetime(end_year, end_month, 1)


def last_closed_period(frequency: SettlementFrequency, as_of: datetime) -> Tuple[datetime, datetime]:
    """The most recent period whose end is on or before `as_of`."""
    current_start, _ = period_bounds(frequency, as_of)
    return period_bounds(frequency, current_start - timedelta(days=1))


def is_aligned_period(frequency: SettlementFrequency, period_start: datetime, period_end: datetime) -> bool:
    return period_bounds(frequency, period_start) == (period_start, period_end)


def period_last_day(period_end: datetime) -> datetime:
    return start_of_day(period_end - timedelta(days=1))


def period_label(frequency: SettlementFrequency, period_start: datetime) -> str:
    if SettlementFrequency(frequency) is SettlementFrequency.QUARTERLY:
        return f"Q{(period_start.month - 1) // 3 + 1} {period_start.year}"
    return period_start.strftime("%B %Y")


def due_date_for(period_end: datetime, due_day: int) -> datetime:
    """
    Day `due_day` of the month following the period's last day.

    `period_end` is exclusive, so a January period ending Feb 1 is due in
    February. Days past the end of the month clip to its last day.
    """
    if not 1 <= due_day <= 31:
        raise ValueError(f"due_day must be within 1..31, got {due_day}")
    last_day = period_last_day(period_end)
    year, month = add_months(last_day.year, last_day.month, 1)
    days_in_month = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(due_day, days_in_month))


def is_past_due(due_date: datetime, now: datetime) -> bool:
    """A settlement is late once the whole due day has gone by."""
    return now.date() > due_date.date()
