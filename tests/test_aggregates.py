"""Tests for cross-month aggregates."""

import pytest
from datetime import date
from decimal import Decimal

from budget_engine.calculations.aggregates import (
    calculate_all_time_category_balances,
    calculate_balance_totals,
    calculate_cleared_balances,
    calculate_current_account_balances,
    calculate_ready_to_assign,
)
from budget_engine.calculations.calculator import extract_snapshot, recalculate_month
from budget_engine.models.budget import Account, AccountGroup, Budget, Category
from budget_engine.models.ledger import (
    Expense,
    Income,
    MonthDocument,
    PreviousMonthSnapshot,
    StoredCategoryBalance,
    Transfer,
)


def make_budget():
    return Budget(
        id="b1",
        accounts={"checking": Account(nickname="Checking", opening_balance=Decimal("1000"))},
        categories={
            "groceries": Category(name="Groceries", default_monthly_amount=Decimal("500")),
            "rent": Category(name="Rent", opening_balance=Decimal("25")),
        },
    )


def spend(month, amount, category_id="groceries", cleared=False):
    return Expense(
        date=date(2024, month, 10),
        amount=Decimal(amount),
        account_id="checking",
        category_id=category_id,
        cleared=cleared,
    )


def chain(budget, entries):
    """Recalculate (month, transactions, finalized allocations or None) in order."""
    snapshot = PreviousMonthSnapshot.empty()
    months = []
    for month, transactions, allocations in entries:
        document = MonthDocument(budget_id="b1", year=2024, month=month)
        for transaction in transactions:
            document = document.with_transaction(transaction)
        if allocations is not None:
            document = document.model_copy(update={
                "category_balances": [
                    StoredCategoryBalance(category_id=k, allocated=Decimal(v))
                    for k, v in allocations.items()
                ],
                "are_allocations_finalized": True,
            })
        recalculated = recalculate_month(document, snapshot, budget, Decimal("0"))
        snapshot = extract_snapshot(recalculated)
        months.append(recalculated)
    return months


class TestAllTimeCategoryBalances:
    """Tests for the all-time category aggregator."""

    def test_seed_backs_out_current_draft(self):
        """Test that an unfinalized current month seeds with its committed end."""
        months = chain(make_budget(), [(3, [spend(3, "-60")], None)])
        balances = calculate_all_time_category_balances(months, now=(2024, 3), horizon=(2024, 6))
        assert balances["groceries"] == Decimal("-60.00")
        assert balances["rent"] == Decimal("25.00")

    def test_forward_walk_gates_allocations_on_finalization(self):
        """Test finalized allocations added, spending applied regardless."""
        months = chain(make_budget(), [
            (3, [spend(3, "-60")], None),
            (4, [spend(4, "-30")], {"groceries": "200", "rent": "0"}),
            (5, [spend(5, "-20")], None),
            (7, [spend(7, "-999")], {"groceries": "999"}),
        ])

        balances = calculate_all_time_category_balances(months, now=(2024, 3), horizon=(2024, 6))

        # -60 + (200 - 30) + (0 - 20); July is past the horizon
        assert balances["groceries"] == Decimal("90.00")

    def test_no_past_month_uses_opening_balances(self):
        """Test a budget whose months all lie in the future."""
        budget = make_budget()
        months = chain(budget, [(6, [spend(6, "-10")], None)])
        balances = calculate_all_time_category_balances(
            months, now=(2024, 5), horizon=(2024, 8), categories=budget.categories
        )
        assert balances["groceries"] == Decimal("-10.00")
        assert balances["rent"] == Decimal("25.00")


class TestAccountAggregates:
    """Tests for current account balances and ready to assign."""

    def test_current_balance_from_latest_past_month(self):
        """Test that future months do not move current balances."""
        budget = make_budget()
        months = chain(budget, [
            (3, [spend(3, "-60")], None),
            (4, [Income(date=date(2024, 4, 1), amount=Decimal("100"), account_id="checking")], None),
        ])
        balances = calculate_current_account_balances(months, now=(2024, 3), accounts=budget.accounts)
        assert balances == {"checking": Decimal("940.00")}

    def test_opening_balance_without_months(self):
        """Test accounts with no months yet."""
        budget = make_budget()
        assert calculate_current_account_balances([], (2024, 3), budget.accounts) == {
            "checking": Decimal("1000.00"),
        }

    def test_ready_to_assign_ignores_overspent_categories(self):
        """Test that negative categories do not offset the pool."""
        budget = Budget(
            id="b1",
            accounts={
                "checking": Account(nickname="Checking", balance=Decimal("1000")),
                "brokerage": Account(nickname="Brokerage", balance=Decimal("500"), on_budget=False),
            },
        )
        ready = calculate_ready_to_assign(
            budget, {"groceries": Decimal("300"), "rent": Decimal("-50")}
        )
        assert ready == Decimal("700.00")

    def test_ready_to_assign_respects_group_flags(self):
        """Test that a closed group removes its accounts from the pool."""
        budget = Budget(
            id="b1",
            accounts={
                "checking": Account(nickname="Checking", balance=Decimal("1000")),
                "old": Account(nickname="Old", balance=Decimal("400"), account_group_id="closed"),
            },
            account_groups={"closed": AccountGroup(name="Closed", is_active=False)},
            categories={"groceries": Category(name="Groceries", balance=Decimal("250"))},
        )
        assert calculate_ready_to_assign(budget) == Decimal("750.00")


class TestMonthTotals:
    """Tests for per-month totals and cleared balances."""

    def test_balance_totals_count_positive_ends_only(self):
        """Test the category column totals."""
        month = chain(make_budget(), [(3, [spend(3, "-600")], None)])[0]
        totals = calculate_balance_totals(month.category_balances)

        assert totals.allocated == Decimal("500.00")
        assert totals.spent == Decimal("-600.00")
        assert totals.start == Decimal("25.00")
        # groceries ends at -100, rent at 25
        assert totals.end == Decimal("25.00")

    def test_cleared_balances(self):
        """Test cleared vs uncleared balances."""
        month = chain(make_budget(), [(3, [
            spend(3, "-40", cleared=True),
            spend(3, "-15"),
            Transfer(
                date=date(2024, 3, 12),
                amount=Decimal("5"),
                from_category_id="groceries",
                to_category_id="rent",
            ),
        ], None)])[0]

        cleared = calculate_cleared_balances(month)["checking"]

        assert cleared.cleared_balance == Decimal("960.00")
        assert cleared.uncleared_balance == Decimal("945.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
