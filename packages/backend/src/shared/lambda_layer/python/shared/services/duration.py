"""
Package duration parsing.

Durations are free-form strings such as "1 year", "6 months" or "30 days".
Parsing is deliberately forgiving: anything unrecognised becomes one year.
"""

import calendar
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple

from shared.constants.entitlements import (
    DEFAULT_DAY_COUNT,
    DEFAULT_DURATION,
    DEFAULT_MONTH_COUNT,
    DEFAULT_YEAR_COUNT,
)

_NUMBER = re.compile(r"\d+")


def parse_duration(duration: Optional[str]) -> Tuple[str, int]:
    """
    Split a duration string into a unit and an amount.

    Matching is a case-sensitive substring test checked in the order
    year, month, day. The first integer found in the string is the amount.

    Returns:
        Tuple of ("years" | "months" | "days", amount)
    """
    duration = duration or DEFAULT_DURATION
    match = _NUMBER.search(duration)
    amount = int(match.group()) if match else None

    if "year" in duration:
        return "years", DEFAULT_YEAR_COUNT if amount is None else amount
    if "month" in duration:
        return "months", DEFAULT_MONTH_COUNT if amount is None else amount
    if "day" in duration:
        return "days", DEFAULT_DAY_COUNT if amount is None else amount
    return "years", DEFAULT_YEAR_COUNT


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_expiry(start: datetime, duration: Optional[str]) -> datetime:
    """Return start + the parsed package duration."""
    unit, amount = parse_duration(duration)
    if unit == "years":
        return add_months(start, amount * 12)
    if unit == "months":
        return add_months(start, amount)
    return start + timedelta(days=amount)
