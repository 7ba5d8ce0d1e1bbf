"""Tests for transaction validation and the transfer endpoint rule."""

import pytest
from datetime import date
from decimal import Decimal

from budget_engine.models.budget import Account, Budget, Category
from budget_engine.models.ledger import (
    NO_ACCOUNT_ID,
    NO_CATEGORY_ID,
    Adjustment,
    Expense,
    Income,
    Transfer,
)
from budget_engine.validation import (
    ADJUSTMENT_NO_TARGET_MESSAGE,
    TRANSFER_ACCOUNT_MISMATCH_MESSAGE,
    TRANSFER_CATEGORY_MISMATCH_MESSAGE,
    TRANSFER_NOTHING_REAL_MESSAGE,
    InvalidTransactionError,
    InvalidTransferError,
    TransactionValidator,
    TransferDraft,
    check_transfer_endpoints,
)


def make_transfer(from_account, to_account, from_category, to_category, amount="50.00"):
    return Transfer(
        date=date(2024, 3, 1),
        amount=Decimal(amount),
        from_account_id=from_account,
        to_account_id=to_account,
        from_category_id=from_category,
        to_category_id=to_category,
    )


class TestTransferEndpoints:
    """Tests for check_transfer_endpoints."""

    def test_scenario_real_category_to_nothing_is_rejected(self):
        """Test (AccountX, CategoryY) -> (AccountZ, no category) fails on categories."""
        message = check_transfer_endpoints("account_x", "account_z", "category_y", NO_CATEGORY_ID)
        assert message == TRANSFER_CATEGORY_MISMATCH_MESSAGE

    def test_all_sentinels_rejected(self):
        """Test that a transfer must move something real."""
        message = check_transfer_endpoints(NO_ACCOUNT_ID, NO_ACCOUNT_ID, NO_CATEGORY_ID, NO_CATEGORY_ID)
        assert message == TRANSFER_NOTHING_REAL_MESSAGE

    def test_real_account_to_nothing_rejected(self):
        """Test an account mismatch."""
        message = check_transfer_endpoints("checking", NO_ACCOUNT_ID, "rent", "groceries")
        assert message == TRANSFER_ACCOUNT_MISMATCH_MESSAGE

    @pytest.mark.parametrize("endpoints", [
        ("checking", "savings", NO_CATEGORY_ID, NO_CATEGORY_ID),
        (NO_ACCOUNT_ID, NO_ACCOUNT_ID, "groceries", "rent"),
        ("checking", "savings", "groceries", "rent"),
    ])
    def test_valid_combinations(self, endpoints):
        """Test the accepted endpoint shapes."""
        assert check_transfer_endpoints(*endpoints) is None


class TestTransferDraft:
    """Tests for endpoint-by-endpoint entry."""

    def test_gate_is_recomputed_on_every_edit(self):
        """Test that each edit re-evaluates the rule."""
        draft = TransferDraft(amount=Decimal("50"))
        assert draft.error == TRANSFER_NOTHING_REAL_MESSAGE

        draft = draft.with_endpoint("from_account_id", "checking")
        assert draft.error == TRANSFER_ACCOUNT_MISMATCH_MESSAGE
        assert draft.can_submit is False

        draft = draft.with_endpoint("to_account_id", "savings")
        assert draft.error is None
        assert draft.can_submit is True

    def test_unknown_endpoint_rejected(self):
        """Test that only the four endpoints can be edited."""
        with pytest.raises(ValueError, match="Unknown transfer endpoint"):
            TransferDraft().with_endpoint("amount", "5")

    def test_blocked_draft_does_not_coerce(self):
        """Test that submitting a blocked draft raises instead of fixing it."""
        draft = TransferDraft(
            amount=Decimal("50"),
            from_account_id="account_x",
            to_account_id="account_z",
            from_category_id="category_y",
        )
        with pytest.raises(InvalidTransferError, match="Both categories must be real"):
            draft.to_transfer(date=date(2024, 3, 1))

    def test_to_transfer(self):
        """Test building an accepted transfer."""
        draft = TransferDraft(
            amount=Decimal("50"), from_category_id="groceries", to_category_id="rent"
        )
        transfer = draft.to_transfer(date=date(2024, 3, 1), description="Rebalance")
        assert transfer.amount == Decimal("50")
        assert transfer.description == "Rebalance"


class TestTransactionValidator:
    """Tests for TransactionValidator."""

    def _budget(self):
        return Budget(
            id="b1",
            accounts={"checking": Account(nickname="Checking")},
            categories={"groceries": Category(name="Groceries")},
        )

    def test_invalid_transfer_result(self):
        """Test the issue reported for a category mismatch."""
        transfer = make_transfer("account_x", "account_z", "category_y", NO_CATEGORY_ID)
        result = TransactionValidator().validate(transfer)

        assert result.is_valid is False
        assert result.errors[0].field == "category"
        assert result.first_error == TRANSFER_CATEGORY_MISMATCH_MESSAGE

    def test_ensure_valid_raises_transfer_error(self):
        """Test that invalid transfers raise InvalidTransferError."""
        transfer = make_transfer(NO_ACCOUNT_ID, NO_ACCOUNT_ID, NO_CATEGORY_ID, NO_CATEGORY_ID)
        with pytest.raises(InvalidTransferError) as exc_info:
            TransactionValidator().ensure_valid(transfer)
        assert exc_info.value.result.is_valid is False

    def test_adjustment_needs_a_target(self):
        """Test the adjustment guard."""
        adjustment = Adjustment(date=date(2024, 3, 1), amount=Decimal("5"))
        with pytest.raises(InvalidTransactionError, match="real account or a real category"):
            TransactionValidator().ensure_valid(adjustment)
        assert TransactionValidator().validate(adjustment).first_error == ADJUSTMENT_NO_TARGET_MESSAGE

    def test_unknown_references_are_warnings(self):
        """Test that unknown ids warn but do not block."""
        expense = Expense(
            date=date(2024, 3, 1),
            amount=Decimal("-5"),
            account_id="wallet",
            category_id="groceries",
        )
        result = TransactionValidator(self._budget()).validate(expense)
        assert result.is_valid is True
        assert [i.issue_type for i in result.issues] == ["unknown_reference"]

    def test_valid_income(self):
        """Test a clean income."""
        income = Income(date=date(2024, 3, 1), amount=Decimal("10"), account_id="checking")
        result = TransactionValidator(self._budget()).ensure_valid(income)
        assert result.issues == []

    def test_user_friendly_summary(self):
        """Test the message shown next to the form."""
        validator = TransactionValidator()
        transfer = make_transfer("account_x", "account_z", "category_y", NO_CATEGORY_ID)
        summary = validator.get_user_friendly_summary(validator.validate(transfer))
        assert "can't be saved" in summary
        assert TRANSFER_CATEGORY_MISMATCH_MESSAGE in summary


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
