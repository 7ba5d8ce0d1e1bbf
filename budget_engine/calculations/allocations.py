"""
Allocation Resolver

A category's allocation for a month is either:
- finalized: the amount stored on the month when allocations were locked,
  copied verbatim forever after; or
- draft: resolved live from the category's default rule, for display only.

Draft rules:
- fixed: default_monthly_amount as-is
- percentage: default_monthly_amount% of the income received N months back,
  where N is the budget's percentage_income_months_back
"""

from decimal import Decimal
from typing import Mapping, Optional

from budget_engine.calculations.currency import ZERO, Amount, round_currency, to_decimal
from budget_engine.models.budget import Budget, Category, DefaultAllocationType
from budget_engine.models.ledger import (
    MonthDocument,
    StoredCategoryBalance,
    is_real_category,
)


def resolve_allocation(category: Category, months_back_income: Amount) -> Decimal:
    """Draft allocation for one category."""
    if category.default_monthly_amount is None:
        return ZERO

    if category.default_monthly_type == DefaultAllocationType.PERCENTAGE:
        percentage = to_decimal(category.default_monthly_amount)
        return round_currency(percentage / 100 * to_decimal(months_back_income))

    return round_currency(category.default_monthly_amount)


def resolve_draft_allocations(
    categories: Mapping[str, Category],
    months_back_income: Amount,
) -> dict[str, Decimal]:
    """Draft allocation for every category, keyed by id."""
    return {
        category_id: resolve_allocation(category, months_back_income)
        for category_id, category in categories.items()
    }


def effective_months_back(budget: Budget, default: int = 1) -> int:
    """The income lookback N for percentage allocations."""
    return budget.percentage_income_months_back or default


def finalize_month_allocations(
    document: MonthDocument,
    allocations: Mapping[str, Amount],
    categories: Optional[Mapping[str, Category]] = None,
) -> MonthDocument:
    """
    Lock a month's allocations.

    Every amount is rounded. Categories known to the budget but missing from
    the month are added with 0 so the frozen set is complete. Start balances
    already on the document are kept untouched.
    """
    by_id: dict[str, StoredCategoryBalance] = {
        balance.category_id: balance for balance in document.category_balances
    }

    wanted = set(by_id) | set(allocations) | set(categories or {})
    balances = []
    for category_id in sorted(wanted):
        if not is_real_category(category_id):
            continue
        existing = by_id.get(category_id)
        if category_id in allocations:
            allocated = round_currency(allocations[category_id])
        elif existing is not None:
            allocated = round_currency(existing.allocated)
        else:
            allocated = ZERO
        balances.append(StoredCategoryBalance(
            category_id=category_id,
            start_balance=existing.start_balance if existing else None,
            allocated=allocated,
        ))

    return document.model_copy(update={
        "category_balances": balances,
        "are_allocations_finalized": True,
    })
