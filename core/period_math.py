"""
period_math.py
---------------
Pure calendar arithmetic shared by both recognizers. No state.

Periods are (year, month) tuples. They sort chronologically, hash cheaply
and never carry a day component, so two rows for the same month always
compare equal regardless of the payment day that produced them.

Proration factors are returned as Fractions so that money math downstream
stays exact: amount * numerator / denominator in Decimal.
"""

import calendar
from datetime import date, datetime
from fractions import Fraction

import pandas as pd

from core.errors import InvalidDateError


def parse_date(value, payment_id: int | None = None) -> date:
    """
    Coerce a raw payment timestamp into a date.

    Accepts date, datetime / pandas Timestamp, and ISO-8601 strings.

    Raises:
        InvalidDateError: value is missing or unparseable.
    """
    if value is None or (not isinstance(value, (str, date)) and pd.isna(value)):
        raise InvalidDateError(f"Missing payment date: {value!r}", payment_id)

    if isinstance(value, datetime):
        if pd.isna(value):
            raise InvalidDateError("Missing payment date: NaT", payment_id)
        return value.date()
    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not value.strip():
        raise InvalidDateError(f"Unparseable payment date: {value!r}", payment_id)

    try:
        parsed = pd.to_datetime(value.strip())
    except (ValueError, TypeError, OverflowError) as exc:
        raise InvalidDateError(f"Unparseable payment date: {value!r}", payment_id) from exc

    if pd.isna(parsed):
        raise InvalidDateError(f"Unparseable payment date: {value!r}", payment_id)
    return parsed.date()


def days_in_month(d: date) -> int:
    """Number of calendar days in the month containing d."""
    return calendar.monthrange(d.year, d.month)[1]


def month_end(d: date) -> date:
    """Last calendar day of d's month."""
    return date(d.year, d.month, days_in_month(d))


def proration_factor(start: date, end_of_month: date | None = None) -> Fraction:
    """
    Share of start's month covered from start through end_of_month, inclusive.

    A payment on the 15th of a 31-day month covers 17 days: 17/31.
    A payment on the 1st always yields exactly 1.

    Args:
        start: First covered day.
        end_of_month: Last covered day. Defaults to the last day of start's month.
    """
    if start.day == 1 and end_of_month is None:
        return Fraction(1)

    if end_of_month is None:
        end_of_month = month_end(start)

    if month_key(end_of_month) != month_key(start) or end_of_month < start:
        raise InvalidDateError(
            f"Proration range {start} -> {end_of_month} must stay within one month"
        )

    covered = (end_of_month - start).days + 1
    return Fraction(covered, days_in_month(start))


def month_key(d: date) -> tuple[int, int]:
    """Canonical period identifier for d."""
    return (d.year, d.month)


def add_months(period: tuple[int, int], n: int) -> tuple[int, int]:
    """Step a period n calendar months forward (or back, for negative n)."""
    year, month = period
    index = year * 12 + (month - 1) + n
    return (index // 12, index % 12 + 1)


def month_label(period: tuple[int, int]) -> str:
    """'YYYY-MM' label used in the report."""
    return f"{period[0]:04d}-{period[1]:02d}"
