"""
Balance Calculations Package

Pure, I/O-free building blocks of the recalculation engine: currency
normalization, month arithmetic, the per-month calculator, the persistence
window, allocation resolution and cross-month aggregates.
"""

from budget_engine.calculations.aggregates import (
    CategoryBalanceTotals,
    ClearedBalance,
    calculate_all_time_category_balances,
    calculate_balance_totals,
    calculate_cleared_balances,
    calculate_current_account_balances,
    calculate_ready_to_assign,
)
from budget_engine.calculations.allocations import (
    effective_months_back,
    finalize_month_allocations,
    resolve_allocation,
    resolve_draft_allocations,
)
from budget_engine.calculations.calculator import (
    detect_precision_drift,
    extract_snapshot,
    recalculate_month,
)
from budget_engine.calculations.calendar import (
    MonthNavigationError,
    YearMonth,
    can_create_month,
    current_year_month,
    ensure_can_create_month,
    month_index,
    month_ordinal,
    next_month,
    parse_ordinal,
    previous_month,
    shift_month,
)
from budget_engine.calculations.currency import (
    ZERO,
    currency_equal,
    needs_precision_fix,
    round_currency,
    sum_currency,
    to_decimal,
)
from budget_engine.calculations.window import (
    PersistenceWindow,
    anchor_snapshot,
    apply_start_balances,
    has_anchor,
    needs_start_balance_write,
    start_balance_payload,
)

__all__ = [
    # Currency
    "ZERO",
    "currency_equal",
    "needs_precision_fix",
    "round_currency",
    "sum_currency",
    "to_decimal",
    # Calendar
    "MonthNavigationError",
    "YearMonth",
    "can_create_month",
    "current_year_month",
    "ensure_can_create_month",
    "month_index",
    "month_ordinal",
    "next_month",
    "parse_ordinal",
    "previous_month",
    "shift_month",
    # Calculator
    "detect_precision_drift",
    "extract_snapshot",
    "recalculate_month",
    # Window
    "PersistenceWindow",
    "anchor_snapshot",
    "apply_start_balances",
    "has_anchor",
    "needs_start_balance_write",
    "start_balance_payload",
    # Allocations
    "effective_months_back",
    "finalize_month_allocations",
    "resolve_allocation",
    "resolve_draft_allocations",
    # Aggregates
    "CategoryBalanceTotals",
    "ClearedBalance",
    "calculate_all_time_category_balances",
    "calculate_balance_totals",
    "calculate_cleared_balances",
    "calculate_current_account_balances",
    "calculate_ready_to_assign",
]
