"""
Month Arithmetic and Month Creation Rules

Months are addressed as (year, month) tuples and keyed in the month map by
their YYYYMM ordinal. Ordinals sort lexically in calendar order.
"""

from datetime import date
from typing import Optional

from budget_engine.models.budget import Budget


YearMonth = tuple[int, int]


class MonthNavigationError(ValueError):
    """A month outside the creation rules was requested."""

    def __init__(self, year: int, month: int, message: str):
        self.year = year
        self.month = month
        super().__init__(message)


def month_ordinal(year: int, month: int) -> str:
    return f"{year:04d}{month:02d}"


def parse_ordinal(ordinal: str) -> YearMonth:
    return int(ordinal[:4]), int(ordinal[4:])


def month_index(year: int, month: int) -> int:
    """Months since year 0; differences give month distances."""
    return year * 12 + (month - 1)


def shift_month(year: int, month: int, delta: int) -> YearMonth:
    index = month_index(year, month) + delta
    return index // 12, index % 12 + 1


def previous_month(year: int, month: int) -> YearMonth:
    return shift_month(year, month, -1)


def next_month(year: int, month: int) -> YearMonth:
    return shift_month(year, month, 1)


def current_year_month(today: Optional[date] = None) -> YearMonth:
    """Wall-clock helper for application callers; the engine never calls it."""
    today = today or date.today()
    return today.year, today.month


def can_create_month(
    budget: Budget,
    year: int,
    month: int,
    now: YearMonth,
    past_months: int = 3,
    future_months: int = 3,
) -> bool:
    """
    Decide whether a month may be opened.

    Existing months are always allowed, and any month is allowed in an empty
    budget. Otherwise the map may only grow one month at a time: forward
    up to `future_months` past now, or backward down to `past_months`
    before now.
    """
    ordinal = month_ordinal(year, month)
    if ordinal in budget.month_map or not budget.month_map:
        return True

    target = month_index(year, month)
    now_index = month_index(*now)
    latest = month_index(*parse_ordinal(budget.latest_ordinal))
    earliest = month_index(*parse_ordinal(budget.earliest_ordinal))

    if target == latest + 1:
        return target <= now_index + future_months
    if target == earliest - 1:
        return target >= now_index - past_months
    return False


def ensure_can_create_month(
    budget: Budget,
    year: int,
    month: int,
    now: YearMonth,
    past_months: int = 3,
    future_months: int = 3,
) -> None:
    """Raise MonthNavigationError unless can_create_month allows the month."""
    if can_create_month(budget, year, month, now, past_months, future_months):
        return

    earliest = budget.earliest_ordinal
    latest = budget.latest_ordinal
    raise MonthNavigationError(
        year,
        month,
        f"Cannot create {month_ordinal(year, month)}: months must be added one at a time "
        f"next to the existing range {earliest}-{latest}, within {past_months} month(s) "
        f"before and {future_months} month(s) after the current month.",
    )
