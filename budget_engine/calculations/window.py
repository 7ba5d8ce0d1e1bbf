"""
Window / Persistence Policy

The persistence window spans the last K months, the current month, and
everything after it. Months at or before the window's first month carry a
durable start balance for every account and category (the anchors). Months
after the boundary persist nothing but their transaction log; their
balances are always recomputed from the nearest anchor.

DESIGN DECISION: "now" is a constructor argument, never read from the
clock, so every decision here is reproducible in tests.
"""

from decimal import Decimal
from typing import Optional

from budget_engine.calculations.calendar import (
    YearMonth,
    month_index,
    month_ordinal,
    shift_month,
)
from budget_engine.calculations.currency import ZERO, currency_equal, round_currency
from budget_engine.config.settings import EngineSettings
from budget_engine.models.ledger import (
    MonthDocument,
    MonthStartBalances,
    PreviousMonthSnapshot,
    RecalculatedMonth,
    StoredAccountBalance,
    StoredCategoryBalance,
    is_real_account,
    is_real_category,
)


class PersistenceWindow:
    """The window around a given current month."""

    def __init__(
        self,
        now: YearMonth,
        past_months: int = 3,
        future_months: int = 3,
    ):
        self.now = now
        self.past_months = past_months
        self.future_months = future_months

    @classmethod
    def from_settings(cls, now: YearMonth, settings: EngineSettings) -> "PersistenceWindow":
        return cls(
            now,
            past_months=settings.past_window_months,
            future_months=settings.future_window_months,
        )

    @property
    def first_month(self) -> YearMonth:
        """Oldest month of the window: the anchor boundary."""
        return shift_month(*self.now, -self.past_months)

    @property
    def first_ordinal(self) -> str:
        return month_ordinal(*self.first_month)

    @property
    def horizon(self) -> YearMonth:
        """Last month the forward walk and the all-time aggregate reach."""
        return shift_month(*self.now, self.future_months)

    @property
    def horizon_ordinal(self) -> str:
        return month_ordinal(*self.horizon)

    def is_at_or_before_boundary(self, year: int, month: int) -> bool:
        return month_index(year, month) <= month_index(*self.first_month)

    def ordinals(self) -> list[str]:
        """Past months, the current month and the future months, oldest first."""
        span = self.past_months + 1 + self.future_months
        return [
            month_ordinal(*shift_month(*self.first_month, offset))
            for offset in range(span)
        ]

    def months_to_register(self, year: int, month: int) -> list[str]:
        """The edited month plus every window month at or after it."""
        edited = month_ordinal(year, month)
        return sorted({edited, *(o for o in self.ordinals() if o >= edited)})


def has_anchor(document: Optional[MonthDocument]) -> bool:
    """
    True if the month carries a usable persisted start balance.

    At least one real account or category must have a non-null start
    balance, and they must not all be zero.
    """
    if document is None:
        return False

    values = [
        b.start_balance for b in document.account_balances
        if is_real_account(b.account_id) and b.start_balance is not None
    ]
    values += [
        b.start_balance for b in document.category_balances
        if is_real_category(b.category_id) and b.start_balance is not None
    ]
    return any(round_currency(value) != ZERO for value in values)


def anchor_snapshot(
    document: MonthDocument,
    previous_total_income: Decimal = ZERO,
) -> PreviousMonthSnapshot:
    """
    Turn an anchor month's persisted start balances into the snapshot the
    anchor month itself is calculated from.
    """
    return PreviousMonthSnapshot(
        account_end_balances={
            b.account_id: round_currency(b.start_balance)
            for b in document.account_balances
            if is_real_account(b.account_id) and b.start_balance is not None
        },
        category_end_balances={
            b.category_id: round_currency(b.start_balance)
            for b in document.category_balances
            if is_real_category(b.category_id) and b.start_balance is not None
        },
        total_income=round_currency(previous_total_income),
    )


def start_balance_payload(month: RecalculatedMonth) -> MonthStartBalances:
    """The partial write for an anchored month: start balances only."""
    return MonthStartBalances(
        account_start_balances={
            b.account_id: b.start_balance for b in month.account_balances
        },
        category_start_balances={
            b.category_id: b.start_balance for b in month.category_balances
        },
    )


def needs_start_balance_write(
    document: Optional[MonthDocument],
    month: RecalculatedMonth,
) -> bool:
    """True if any recomputed start balance is missing or differs from storage."""
    if document is None:
        return True

    stored_accounts = {b.account_id: b.start_balance for b in document.account_balances}
    stored_categories = {b.category_id: b.start_balance for b in document.category_balances}

    for balance in month.account_balances:
        stored = stored_accounts.get(balance.account_id)
        if stored is None or not currency_equal(stored, balance.start_balance):
            return True

    for balance in month.category_balances:
        stored = stored_categories.get(balance.category_id)
        if stored is None or not currency_equal(stored, balance.start_balance):
            return True

    return False


def apply_start_balances(
    document: MonthDocument,
    payload: MonthStartBalances,
) -> MonthDocument:
    """
    Merge a partial start-balance write into a month document.

    Entries not named in the payload are kept as they are; finalized
    allocations are never touched.
    """
    accounts = {b.account_id: b for b in document.account_balances}
    for account_id, start in payload.account_start_balances.items():
        accounts[account_id] = StoredAccountBalance(
            account_id=account_id,
            start_balance=round_currency(start),
        )

    categories = {b.category_id: b for b in document.category_balances}
    for category_id, start in payload.category_start_balances.items():
        existing = categories.get(category_id)
        categories[category_id] = StoredCategoryBalance(
            category_id=category_id,
            start_balance=round_currency(start),
            allocated=existing.allocated if existing else ZERO,
        )

    return document.model_copy(update={
        "account_balances": [accounts[key] for key in sorted(accounts)],
        "category_balances": [categories[key] for key in sorted(categories)],
    })
