"""
Tests for Budget Engine

Test strategy:
1. Unit tests for individual components (models, calculator, validator)
2. Integration tests for flows (against in-memory storage)
3. No real storage calls in tests (fake worksheets only)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import TypeAdapter

from budget_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budget_engine.models.budget import (
    Account,
    AccountGroup,
    Budget,
    Category,
    DefaultAllocationType,
)
from budget_engine.models.ledger import (
    NO_ACCOUNT_ID,
    NO_CATEGORY_ID,
    AccountBalance,
    Adjustment,
    Expense,
    Income,
    MonthDocument,
    PreviousMonthSnapshot,
    StoredAccountBalance,
    Transaction,
    Transfer,
    ValidationIssue,
    ValidationResult,
    is_real_account,
    is_real_category,
)


class TestTransactionModels:
    """Tests for the transaction variants."""

    def test_income_creation(self):
        """Test Income model creation."""
        income = Income(date=date(2024, 3, 1), amount=Decimal("2500.00"), account_id="checking")
        assert income.kind == "income"
        assert income.amount == Decimal("2500.00")
        assert income.id

    def test_income_rejects_non_positive_amount(self):
        """Test that income amounts must be positive magnitudes."""
        with pytest.raises(ValueError):
            Income(date=date(2024, 3, 1), amount=Decimal("-10"), account_id="checking")

    def test_expense_keeps_sign(self):
        """Test that expense amounts are stored signed."""
        expense = Expense(
            date=date(2024, 3, 2),
            amount=Decimal("-42.55"),
            account_id="checking",
            category_id="groceries",
        )
        assert expense.amount == Decimal("-42.55")

    def test_transfer_defaults_to_sentinels(self):
        """Test that unspecified transfer endpoints are the 'none' sentinels."""
        transfer = Transfer(date=date(2024, 3, 3), amount=Decimal("50"))
        assert transfer.from_account_id == NO_ACCOUNT_ID
        assert transfer.to_category_id == NO_CATEGORY_ID

    def test_transaction_union_discriminates_on_kind(self):
        """Test that stored dicts parse into the right variant."""
        adapter = TypeAdapter(Transaction)
        parsed = adapter.validate_python({
            "kind": "adjustment",
            "date": "2024-03-04",
            "amount": "5.00",
            "account_id": "cash",
        })
        assert isinstance(parsed, Adjustment)
        assert parsed.category_id == NO_CATEGORY_ID

    def test_sentinel_helpers(self):
        """Test sentinel detection."""
        assert is_real_account("checking") is True
        assert is_real_account(NO_ACCOUNT_ID) is False
        assert is_real_category(NO_CATEGORY_ID) is False
        assert is_real_category("") is False


class TestMonthDocument:
    """Tests for MonthDocument."""

    def test_ordinal(self):
        """Test the YYYYMM month-map key."""
        document = MonthDocument(budget_id="b1", year=2024, month=3)
        assert document.ordinal == "202403"
        assert document.year_month == (2024, 3)

    def test_with_transaction_adds_to_matching_list(self):
        """Test that transactions land in the list for their kind."""
        expense = Expense(
            date=date(2024, 3, 2), amount=Decimal("-10"), account_id="a", category_id="c"
        )
        document = MonthDocument(budget_id="b1", year=2024, month=3).with_transaction(expense)
        assert document.expenses == [expense]
        assert document.find_transaction(expense.id) == expense

    def test_with_transaction_replaces_by_id_across_kinds(self):
        """Test that re-adding an id replaces it even if the kind changed."""
        expense = Expense(
            id="t1", date=date(2024, 3, 2), amount=Decimal("-10"), account_id="a", category_id="c"
        )
        income = Income(id="t1", date=date(2024, 3, 2), amount=Decimal("10"), account_id="a")

        document = MonthDocument(budget_id="b1", year=2024, month=3)
        document = document.with_transaction(expense).with_transaction(income)

        assert document.expenses == []
        assert document.income == [income]

    def test_without_transaction(self):
        """Test removal by id."""
        income = Income(date=date(2024, 3, 1), amount=Decimal("10"), account_id="a")
        document = MonthDocument(budget_id="b1", year=2024, month=3).with_transaction(income)
        assert document.without_transaction(income.id).income == []

    def test_month_bounds(self):
        """Test that month must be 1-12."""
        with pytest.raises(ValueError):
            MonthDocument(budget_id="b1", year=2024, month=13)


class TestBalanceShapes:
    """Tests for stored vs derived balance shapes."""

    def test_stored_start_balance_defaults_to_none(self):
        """Test that an un-anchored stored balance has no start balance."""
        assert StoredAccountBalance(account_id="a").start_balance is None

    def test_to_stored_drops_derived_fields(self):
        """Test that only the durable fields survive to_stored()."""
        balance = AccountBalance(
            account_id="a",
            start_balance=Decimal("100.00"),
            income=Decimal("10.00"),
            expenses=Decimal("-42.55"),
            transfers=Decimal("0.00"),
            adjustments=Decimal("0.00"),
            net_change=Decimal("-32.55"),
            end_balance=Decimal("67.45"),
        )
        stored = balance.to_stored()
        assert type(stored) is StoredAccountBalance
        assert stored.model_dump() == {"account_id": "a", "start_balance": Decimal("100.00")}

    def test_empty_snapshot(self):
        """Test the 'very first month' snapshot."""
        assert PreviousMonthSnapshot.empty().is_empty is True


class TestBudgetModels:
    """Tests for Budget and its entities."""

    def test_month_map_validation(self):
        """Test that month map keys must be YYYYMM."""
        with pytest.raises(ValueError, match="Invalid month ordinal"):
            Budget(id="b1", month_map={"2024-03"})

    def test_ordinal_helpers(self):
        """Test earliest/latest ordinals."""
        budget = Budget(id="b1", month_map={"202403", "202401", "202402"})
        assert budget.sorted_ordinals == ["202401", "202402", "202403"]
        assert budget.earliest_ordinal == "202401"
        assert budget.latest_ordinal == "202403"
        assert Budget(id="b2").earliest_ordinal is None

    def test_percentage_months_back_bounds(self):
        """Test the 1-12 bound on the income lookback."""
        with pytest.raises(ValueError):
            Budget(id="b1", percentage_income_months_back=0)

    def test_category_rejects_negative_default(self):
        """Test that default monthly amounts cannot be negative."""
        with pytest.raises(ValueError, match="cannot be negative"):
            Category(name="Groceries", default_monthly_amount=Decimal("-1"))

    def test_category_defaults_to_fixed(self):
        """Test the default allocation type."""
        assert Category(name="Rent").default_monthly_type == DefaultAllocationType.FIXED

    def test_account_group_overrides_account_flags(self):
        """Test that group flags take precedence for ready-to-assign."""
        budget = Budget(
            id="b1",
            accounts={
                "savings": Account(nickname="Savings", account_group_id="tracking"),
                "checking": Account(nickname="Checking"),
                "old": Account(nickname="Old", is_active=False),
            },
            account_groups={"tracking": AccountGroup(name="Tracking", on_budget=False)},
        )
        assert budget.account_counts_toward_budget("savings") is False
        assert budget.account_counts_toward_budget("checking") is True
        assert budget.account_counts_toward_budget("old") is False
        assert budget.account_counts_toward_budget("missing") is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.CACHE_MISS,
            description="Cache miss for budget",
        )
        assert event.event_type == AuditEventType.CACHE_MISS
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.START_BALANCES_PERSISTED,
            description="Persisted start balances",
            details={"accounts": 2, "categories": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "start_balances_persisted"
        assert log_dict["details"]["categories"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            description="Expense added",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "transaction_added"  # event_type
        assert row[10] == "True"  # is_user_action

    def test_audit_event_builder_anchor_missing(self):
        """Test AuditEventBuilder.anchor_missing."""
        correlation_id = uuid4()

        event = AuditEventBuilder.anchor_missing(
            budget_id="b1",
            start_ordinal="202401",
            source="earliest_month",
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.ANCHOR_MISSING
        assert event.severity == AuditSeverity.WARNING
        assert event.entity_id == "b1"
        assert event.correlation_id == correlation_id
        assert event.details["source"] == "earliest_month"

    def test_audit_event_builder_transaction_changed(self):
        """Test AuditEventBuilder.transaction_changed."""
        event = AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_DELETED,
            budget_id="b1",
            ordinal="202403",
            transaction_id="t1",
            kind="expense",
            correlation_id=uuid4(),
        )

        assert event.entity_id == "t1"
        assert event.description == "Expense deleted in 202403"
        assert event.is_user_action is True


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_errors(self):
        """Test the errors/first_error helpers."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="category",
                    issue_type="endpoint_mismatch",
                    message="Categories mismatch",
                    severity="error",
                ),
                ValidationIssue(
                    field="amount",
                    issue_type="zero_amount",
                    message="Zero amount",
                    severity="warning",
                ),
            ],
        )
        assert len(result.errors) == 1
        assert result.first_error == "Categories mismatch"

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="account_id",
                    issue_type="unknown_reference",
                    message="Unknown account",
                    severity="warning",
                ),
            ],
        )
        assert result.errors == []
        assert result.first_error is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
