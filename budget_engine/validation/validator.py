"""
Transaction Validation

DESIGN DECISION: Validation runs before a transaction is accepted into a
month, never after. A rejected transaction blocks submission with a
message the user can act on; nothing is silently coerced.

TRANSFER ENDPOINT RULE:
A transfer has four endpoints (from/to account, from/to category), any of
which may be a "none" sentinel. It is accepted only if:
1. At least one pair is real (not all four are "none")
2. The accounts are both real or both "none"
3. The categories are both real or both "none"
The rule is re-evaluated on every edit of an endpoint (see TransferDraft).

ADJUSTMENT GUARD:
An adjustment must touch at least one real account or category.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from budget_engine.models.budget import Budget
from budget_engine.models.ledger import (
    NO_ACCOUNT_ID,
    NO_CATEGORY_ID,
    Adjustment,
    Expense,
    Income,
    Transaction,
    TransactionKind,
    Transfer,
    ValidationIssue,
    ValidationResult,
    is_real_account,
    is_real_category,
)


TRANSFER_NOTHING_REAL_MESSAGE = (
    'A transfer must move between real categories or real accounts, '
    'not all "No" options.'
)
TRANSFER_ACCOUNT_MISMATCH_MESSAGE = (
    'Both accounts must be real accounts, or both must be "No Account". '
    'Cannot transfer from a real account to nothing.'
)
TRANSFER_CATEGORY_MISMATCH_MESSAGE = (
    'Both categories must be real categories, or both must be "No Category". '
    'Cannot transfer from a real category to nothing.'
)
ADJUSTMENT_NO_TARGET_MESSAGE = (
    'An adjustment must apply to a real account or a real category, '
    'not "No Account" and "No Category" together.'
)


class InvalidTransactionError(ValueError):
    """A transaction failed validation and must not be saved."""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        self.result = result
        super().__init__(message)


class InvalidTransferError(InvalidTransactionError):
    """A transfer's endpoints break the four-endpoint rule."""
    pass


def check_transfer_endpoints(
    from_account_id: str,
    to_account_id: str,
    from_category_id: str,
    to_category_id: str,
) -> Optional[str]:
    """
    The gating predicate for transfer entry.

    Returns the message for the first rule that fails, or None if the
    endpoints are acceptable.
    """
    from_account_real = is_real_account(from_account_id)
    to_account_real = is_real_account(to_account_id)
    from_category_real = is_real_category(from_category_id)
    to_category_real = is_real_category(to_category_id)

    if not (from_account_real or to_account_real or from_category_real or to_category_real):
        return TRANSFER_NOTHING_REAL_MESSAGE
    if from_account_real != to_account_real:
        return TRANSFER_ACCOUNT_MISMATCH_MESSAGE
    if from_category_real != to_category_real:
        return TRANSFER_CATEGORY_MISMATCH_MESSAGE
    return None


class TransferDraft(BaseModel):
    """
    A transfer being entered.

    Each endpoint edit produces a new draft whose `error` is recomputed, so
    the submit button can be gated on `can_submit` at every step.
    """

    from_account_id: str = NO_ACCOUNT_ID
    to_account_id: str = NO_ACCOUNT_ID
    from_category_id: str = NO_CATEGORY_ID
    to_category_id: str = NO_CATEGORY_ID
    amount: Optional[Decimal] = Field(default=None, gt=0)

    @property
    def error(self) -> Optional[str]:
        return check_transfer_endpoints(
            self.from_account_id,
            self.to_account_id,
            self.from_category_id,
            self.to_category_id,
        )

    @property
    def can_submit(self) -> bool:
        return self.amount is not None and self.error is None

    def with_endpoint(self, field: str, value: str) -> "TransferDraft":
        if field not in ("from_account_id", "to_account_id", "from_category_id", "to_category_id"):
            raise ValueError(f"Unknown transfer endpoint: {field}")
        return self.model_copy(update={field: value})

    def to_transfer(self, **fields) -> Transfer:
        """Build the Transfer; raises InvalidTransferError if the draft is blocked."""
        error = self.error
        if error:
            raise InvalidTransferError(error)
        if self.amount is None:
            raise InvalidTransferError("Enter an amount greater than zero.")
        return Transfer(
            amount=self.amount,
            from_account_id=self.from_account_id,
            to_account_id=self.to_account_id,
            from_category_id=self.from_category_id,
            to_category_id=self.to_category_id,
            **fields,
        )


class TransactionValidator:
    """
    Validates transactions before they are added to a month.

    With a budget, references to unknown accounts/categories are reported
    as warnings (they still calculate, under their raw id).
    """

    def __init__(self, budget: Optional[Budget] = None):
        self._budget = budget

    def _check_transfer(self, transfer: Transfer) -> list[ValidationIssue]:
        message = check_transfer_endpoints(
            transfer.from_account_id,
            transfer.to_account_id,
            transfer.from_category_id,
            transfer.to_category_id,
        )
        if message is None:
            issues = []
            if (
                transfer.from_account_id == transfer.to_account_id
                and transfer.from_category_id == transfer.to_category_id
            ):
                issues.append(ValidationIssue(
                    field="endpoints",
                    issue_type="no_effect",
                    message="This transfer moves money to the same account and category it comes from",
                    severity="warning",
                ))
            return issues

        if message == TRANSFER_CATEGORY_MISMATCH_MESSAGE:
            field = "category"
        elif message == TRANSFER_ACCOUNT_MISMATCH_MESSAGE:
            field = "account"
        else:
            field = "endpoints"

        return [ValidationIssue(
            field=field,
            issue_type="endpoint_mismatch" if field != "endpoints" else "nothing_real",
            message=message,
            severity="error",
            suggested_fix="Pick real values on both sides, or \"No\" on both sides",
        )]

    def _check_adjustment(self, adjustment: Adjustment) -> list[ValidationIssue]:
        if is_real_account(adjustment.account_id) or is_real_category(adjustment.category_id):
            return []
        return [ValidationIssue(
            field="endpoints",
            issue_type="no_effect",
            message=ADJUSTMENT_NO_TARGET_MESSAGE,
            severity="error",
            suggested_fix="Choose the account or category being corrected",
        )]

    def _check_references(self, transaction: Transaction) -> list[ValidationIssue]:
        if self._budget is None:
            return []

        account_ids = []
        category_ids = []
        if isinstance(transaction, Income):
            account_ids = [transaction.account_id]
        elif isinstance(transaction, (Expense, Adjustment)):
            account_ids = [transaction.account_id]
            category_ids = [transaction.category_id]
        elif isinstance(transaction, Transfer):
            account_ids = [transaction.from_account_id, transaction.to_account_id]
            category_ids = [transaction.from_category_id, transaction.to_category_id]

        issues = []
        for account_id in account_ids:
            if is_real_account(account_id) and account_id not in self._budget.accounts:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="unknown_reference",
                    message=f"Account '{account_id}' is not part of this budget",
                    severity="warning",
                ))
        for category_id in category_ids:
            if is_real_category(category_id) and category_id not in self._budget.categories:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="unknown_reference",
                    message=f"Category '{category_id}' is not part of this budget",
                    severity="warning",
                ))
        return issues

    def validate(self, transaction: Transaction) -> ValidationResult:
        issues: list[ValidationIssue] = []

        if isinstance(transaction, Transfer):
            issues.extend(self._check_transfer(transaction))
        elif isinstance(transaction, Adjustment):
            issues.extend(self._check_adjustment(transaction))

        if isinstance(transaction, Expense) and transaction.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="zero_amount",
                message="This expense has an amount of zero",
                severity="warning",
            ))

        issues.extend(self._check_references(transaction))

        return ValidationResult(
            transaction_id=transaction.id,
            kind=TransactionKind(transaction.kind),
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def ensure_valid(self, transaction: Transaction) -> ValidationResult:
        """Validate and raise on any error-severity issue."""
        result = self.validate(transaction)
        if result.is_valid:
            return result

        if isinstance(transaction, Transfer):
            raise InvalidTransferError(result.first_error, result)
        raise InvalidTransactionError(result.first_error, result)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Summary shown next to the entry form."""
        if result.is_valid and not result.issues:
            return "All checks passed."

        lines = []
        if result.errors:
            lines.append("This entry can't be saved yet:")
            for issue in result.errors:
                lines.append(f"   - {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     {issue.suggested_fix}")

        warnings = [issue for issue in result.issues if issue.severity == "warning"]
        if warnings:
            if lines:
                lines.append("")
            lines.append("Please double-check:")
            for issue in warnings:
                lines.append(f"   - {issue.message}")

        return "\n".join(lines)
