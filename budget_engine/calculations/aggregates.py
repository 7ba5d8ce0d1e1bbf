"""
Cross-Month Aggregates

- All-time category balances: the category totals surfaced as "available",
  extended from the current month through finalized future months.
- Ready to assign: on-budget money not yet sitting in a positive category.
- Per-month category totals and cleared/uncleared account balances.

DESIGN DECISION: The forward walk adds a future month's allocations only
once that month is finalized, but applies its spending unconditionally:
spending already recorded is a fact, a draft allocation is not.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel

from budget_engine.calculations.calculator import extract_snapshot
from budget_engine.calculations.calendar import YearMonth, month_index
from budget_engine.calculations.currency import ZERO, round_currency, to_decimal
from budget_engine.models.budget import Account, Budget, Category
from budget_engine.models.ledger import CategoryBalance, RecalculatedMonth


class CategoryBalanceTotals(BaseModel):
    """Column totals for a month's category table."""

    start: Decimal = ZERO
    allocated: Decimal = ZERO
    spent: Decimal = ZERO
    transfers: Decimal = ZERO
    adjustments: Decimal = ZERO
    end: Decimal = ZERO  # positive end balances only


class ClearedBalance(BaseModel):
    """An account's balance counting cleared activity only, and all activity."""

    account_id: str
    cleared_balance: Decimal
    uncleared_balance: Decimal


def _split_by_now(
    months: Sequence[RecalculatedMonth],
    now: YearMonth,
) -> tuple[list[RecalculatedMonth], list[RecalculatedMonth]]:
    ordered = sorted(months, key=lambda m: month_index(m.year, m.month))
    now_index = month_index(*now)
    past = [m for m in ordered if month_index(m.year, m.month) <= now_index]
    future = [m for m in ordered if month_index(m.year, m.month) > now_index]
    return past, future


def calculate_all_time_category_balances(
    months: Sequence[RecalculatedMonth],
    now: YearMonth,
    horizon: YearMonth,
    categories: Optional[Mapping[str, Category]] = None,
) -> dict[str, Decimal]:
    """
    All-time available balance per category.

    Seeded from the committed end balances of the latest month at or before
    now (drafts backed out when that month is unfinalized), then walked
    forward through later months up to the horizon.
    """
    past, future = _split_by_now(months, now)

    if past:
        balances = dict(extract_snapshot(past[-1]).category_end_balances)
    else:
        balances = {
            category_id: round_currency(category.opening_balance)
            for category_id, category in (categories or {}).items()
        }

    horizon_index = month_index(*horizon)
    for month in future:
        if month_index(month.year, month.month) > horizon_index:
            break
        for balance in month.category_balances:
            running = balances.get(balance.category_id, ZERO)
            if month.are_allocations_finalized:
                running += balance.allocated
            running += balance.spent
            balances[balance.category_id] = round_currency(running)

    return balances


def calculate_current_account_balances(
    months: Sequence[RecalculatedMonth],
    now: YearMonth,
    accounts: Optional[Mapping[str, Account]] = None,
) -> dict[str, Decimal]:
    """End balance of every account in the latest month at or before now."""
    past, _ = _split_by_now(months, now)

    balances = {
        account_id: round_currency(account.opening_balance)
        for account_id, account in (accounts or {}).items()
    }
    if past:
        for balance in past[-1].account_balances:
            balances[balance.account_id] = balance.end_balance
    return balances


def calculate_ready_to_assign(
    budget: Budget,
    category_balances: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """
    On-budget, active account money minus positive category balances.

    Overspent (negative) categories do not offset the pool.
    """
    if category_balances is None:
        category_balances = {
            category_id: category.balance for category_id, category in budget.categories.items()
        }

    on_budget_total = sum(
        (
            to_decimal(account.balance)
            for account_id, account in budget.accounts.items()
            if budget.account_counts_toward_budget(account_id)
        ),
        ZERO,
    )
    allocated_total = sum(
        (to_decimal(balance) for balance in category_balances.values() if balance > 0),
        ZERO,
    )
    return round_currency(on_budget_total - allocated_total)


def calculate_balance_totals(balances: Iterable[CategoryBalance]) -> CategoryBalanceTotals:
    totals = defaultdict(Decimal)
    for balance in balances:
        totals["start"] += balance.start_balance
        totals["allocated"] += balance.allocated
        totals["spent"] += balance.spent
        totals["transfers"] += balance.transfers
        totals["adjustments"] += balance.adjustments
        if balance.end_balance > 0:
            totals["end"] += balance.end_balance

    return CategoryBalanceTotals(**{
        field: round_currency(value) for field, value in totals.items()
    })


def calculate_cleared_balances(month: RecalculatedMonth) -> dict[str, ClearedBalance]:
    """
    Cleared and uncleared balance per account for one month.

    Income counts as cleared always; expenses, transfers and adjustments
    only when marked cleared.
    """
    cleared = defaultdict(Decimal)
    for income in month.income:
        cleared[income.account_id] += to_decimal(income.amount)
    for expense in month.expenses:
        if expense.cleared:
            cleared[expense.account_id] += to_decimal(expense.amount)
    for transfer in month.transfers:
        if transfer.cleared:
            cleared[transfer.from_account_id] -= to_decimal(transfer.amount)
            cleared[transfer.to_account_id] += to_decimal(transfer.amount)
    for adjustment in month.adjustments:
        if adjustment.cleared:
            cleared[adjustment.account_id] += to_decimal(adjustment.amount)

    return {
        balance.account_id: ClearedBalance(
            account_id=balance.account_id,
            cleared_balance=round_currency(balance.start_balance + cleared[balance.account_id]),
            uncleared_balance=balance.end_balance,
        )
        for balance in month.account_balances
    }
