"""
Per-Month Balance Calculator

Pure function from (month document, previous snapshot, budget) to the
month's full balance set. No I/O, no clock reads: the caller supplies the
income used for percentage allocations.

Account rules:
    income      = sum of Income amounts into the account
    expenses    = sum of Expense amounts on the account (signed as stored)
    transfers   = incoming transfer amounts - outgoing transfer amounts
    adjustments = sum of Adjustment amounts on the account
    net_change  = income + expenses + transfers + adjustments
    end_balance = start_balance + net_change

Category rules:
    spent       = sum of Expense amounts tagged to the category
    transfers   = incoming - outgoing, as for accounts
    adjustments = sum of Adjustment amounts on the category
    allocated   = finalized stored amount, or the live draft
    end_balance = start_balance + allocated + spent + transfers + adjustments

Sentinel ids never get a balance row. Every field is rounded.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

from budget_engine.calculations.allocations import resolve_allocation
from budget_engine.calculations.currency import (
    ZERO,
    Amount,
    needs_precision_fix,
    round_currency,
    to_decimal,
)
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import (
    AccountBalance,
    CategoryBalance,
    MonthDocument,
    PreviousMonthSnapshot,
    RecalculatedMonth,
    is_real_account,
    is_real_category,
)


def _add(totals: dict[str, Decimal], entity_id: str, amount: Amount) -> None:
    totals[entity_id] += to_decimal(amount)


def _account_activity(month: MonthDocument) -> dict[str, dict[str, Decimal]]:
    """Raw per-account sums, keyed by field then account id."""
    activity = {
        "income": defaultdict(Decimal),
        "expenses": defaultdict(Decimal),
        "transfers": defaultdict(Decimal),
        "adjustments": defaultdict(Decimal),
    }

    for income in month.income:
        if is_real_account(income.account_id):
            _add(activity["income"], income.account_id, income.amount)

    for expense in month.expenses:
        if is_real_account(expense.account_id):
            _add(activity["expenses"], expense.account_id, expense.amount)

    for transfer in month.transfers:
        if is_real_account(transfer.from_account_id):
            _add(activity["transfers"], transfer.from_account_id, -to_decimal(transfer.amount))
        if is_real_account(transfer.to_account_id):
            _add(activity["transfers"], transfer.to_account_id, transfer.amount)

    for adjustment in month.adjustments:
        if is_real_account(adjustment.account_id):
            _add(activity["adjustments"], adjustment.account_id, adjustment.amount)

    return activity


def _category_activity(month: MonthDocument) -> dict[str, dict[str, Decimal]]:
    """Raw per-category sums, keyed by field then category id."""
    activity = {
        "spent": defaultdict(Decimal),
        "transfers": defaultdict(Decimal),
        "adjustments": defaultdict(Decimal),
    }

    for expense in month.expenses:
        if is_real_category(expense.category_id):
            _add(activity["spent"], expense.category_id, expense.amount)

    for transfer in month.transfers:
        if is_real_category(transfer.from_category_id):
            _add(activity["transfers"], transfer.from_category_id, -to_decimal(transfer.amount))
        if is_real_category(transfer.to_category_id):
            _add(activity["transfers"], transfer.to_category_id, transfer.amount)

    for adjustment in month.adjustments:
        if is_real_category(adjustment.category_id):
            _add(activity["adjustments"], adjustment.category_id, adjustment.amount)

    return activity


def _entity_ids(*sources: Iterable[str]) -> list[str]:
    ids: set[str] = set()
    for source in sources:
        ids.update(source)
    return sorted(ids)


def calculate_account_balances(
    month: MonthDocument,
    previous: PreviousMonthSnapshot,
    budget: Budget,
) -> list[AccountBalance]:
    activity = _account_activity(month)

    account_ids = _entity_ids(
        budget.accounts,
        *(totals.keys() for totals in activity.values()),
        previous.account_end_balances,
        (balance.account_id for balance in month.account_balances),
    )

    balances = []
    for account_id in account_ids:
        if not is_real_account(account_id):
            continue

        if account_id in previous.account_end_balances:
            start = previous.account_end_balances[account_id]
        elif account_id in budget.accounts:
            start = budget.accounts[account_id].opening_balance
        else:
            start = ZERO
        start = round_currency(start)

        income = round_currency(activity["income"].get(account_id, ZERO))
        expenses = round_currency(activity["expenses"].get(account_id, ZERO))
        transfers = round_currency(activity["transfers"].get(account_id, ZERO))
        adjustments = round_currency(activity["adjustments"].get(account_id, ZERO))
        net_change = round_currency(income + expenses + transfers + adjustments)

        balances.append(AccountBalance(
            account_id=account_id,
            start_balance=start,
            income=income,
            expenses=expenses,
            transfers=transfers,
            adjustments=adjustments,
            net_change=net_change,
            end_balance=round_currency(start + net_change),
        ))

    return balances


def calculate_category_balances(
    month: MonthDocument,
    previous: PreviousMonthSnapshot,
    budget: Budget,
    months_back_income: Amount,
) -> list[CategoryBalance]:
    activity = _category_activity(month)
    stored_allocations = {
        balance.category_id: balance.allocated for balance in month.category_balances
    }

    category_ids = _entity_ids(
        budget.categories,
        *(totals.keys() for totals in activity.values()),
        previous.category_end_balances,
        stored_allocations,
    )

    balances = []
    for category_id in category_ids:
        if not is_real_category(category_id):
            continue

        category = budget.categories.get(category_id)
        if category_id in previous.category_end_balances:
            start = previous.category_end_balances[category_id]
        elif category is not None:
            start = category.opening_balance
        else:
            start = ZERO
        start = round_currency(start)

        if month.are_allocations_finalized:
            allocated = round_currency(stored_allocations.get(category_id, ZERO))
        elif category is not None:
            allocated = resolve_allocation(category, months_back_income)
        else:
            allocated = ZERO

        spent = round_currency(activity["spent"].get(category_id, ZERO))
        transfers = round_currency(activity["transfers"].get(category_id, ZERO))
        adjustments = round_currency(activity["adjustments"].get(category_id, ZERO))

        balances.append(CategoryBalance(
            category_id=category_id,
            start_balance=start,
            allocated=allocated,
            spent=spent,
            transfers=transfers,
            adjustments=adjustments,
            end_balance=round_currency(start + allocated + spent + transfers + adjustments),
        ))

    return balances


def recalculate_month(
    month: MonthDocument,
    previous: PreviousMonthSnapshot,
    budget: Budget,
    previous_month_income_override: Optional[Amount] = None,
    months_back_income: Optional[Amount] = None,
) -> RecalculatedMonth:
    """
    Derive every balance for one month.

    Args:
        month: The stored month (transactions plus any anchor values)
        previous: The committed snapshot of the month before
        budget: Supplies the entity set, opening balances and allocation rules
        previous_month_income_override: Total income of the calendar month
            before. Defaults to the previous snapshot's total income.
        months_back_income: Income that percentage allocations are based on
            (the month N months back). Defaults to the previous month's income.

    Returns:
        The fully derived month. Calling twice with the same inputs returns
        an identical object.
    """
    if previous_month_income_override is not None:
        previous_month_income = round_currency(previous_month_income_override)
    else:
        previous_month_income = round_currency(previous.total_income)

    if months_back_income is None:
        months_back_income = previous_month_income

    return RecalculatedMonth(
        budget_id=month.budget_id,
        year=month.year,
        month=month.month,
        income=list(month.income),
        expenses=list(month.expenses),
        transfers=list(month.transfers),
        adjustments=list(month.adjustments),
        account_balances=calculate_account_balances(month, previous, budget),
        category_balances=calculate_category_balances(
            month, previous, budget, months_back_income
        ),
        are_allocations_finalized=month.are_allocations_finalized,
        total_income=round_currency(sum((to_decimal(i.amount) for i in month.income), ZERO)),
        total_expenses=round_currency(sum((to_decimal(e.amount) for e in month.expenses), ZERO)),
        previous_month_income=previous_month_income,
        created_at=month.created_at,
        updated_at=month.updated_at,
    )


def extract_snapshot(month: RecalculatedMonth) -> PreviousMonthSnapshot:
    """
    The committed end balances handed to the next month.

    For an unfinalized month the draft allocation is backed out, so drafts
    never leak past the month they are displayed in.
    """
    category_end_balances = {}
    for balance in month.category_balances:
        if month.are_allocations_finalized:
            category_end_balances[balance.category_id] = balance.end_balance
        else:
            category_end_balances[balance.category_id] = round_currency(
                balance.end_balance - balance.allocated
            )

    return PreviousMonthSnapshot(
        account_end_balances={
            balance.account_id: balance.end_balance for balance in month.account_balances
        },
        category_end_balances=category_end_balances,
        total_income=month.total_income,
    )


def detect_precision_drift(month: MonthDocument) -> list[tuple[str, Decimal]]:
    """
    Stored values carrying more than whole cents.

    Returns (field path, raw value) pairs. The calculator rounds these as it
    reads them; callers use this to report the drift.
    """
    drift = []

    for balance in month.account_balances:
        if balance.start_balance is not None and needs_precision_fix(balance.start_balance):
            drift.append((f"account_balances.{balance.account_id}.start_balance", balance.start_balance))

    for balance in month.category_balances:
        if balance.start_balance is not None and needs_precision_fix(balance.start_balance):
            drift.append((f"category_balances.{balance.category_id}.start_balance", balance.start_balance))
        if needs_precision_fix(balance.allocated):
            drift.append((f"category_balances.{balance.category_id}.allocated", balance.allocated))

    for transaction in month.all_transactions():
        if needs_precision_fix(transaction.amount):
            drift.append((f"{transaction.kind}.{transaction.id}.amount", transaction.amount))

    return drift
