"""
Ledger Models for Budget Engine

These models define the month-level data flowing through the engine:
transactions, balance snapshots, and month documents.

DESIGN DECISION: Every balance exists in two shapes.
- The Stored* shape holds only what may be persisted (ids, start balance,
  finalized allocation).
- The derived shape subclasses it and adds everything recomputed from the
  transaction log.
Storage interfaces accept only the stored shapes, so a derived field can
never be written back by accident.

Sign conventions:
- Income and Transfer amounts are positive magnitudes. Direction comes from
  which field references the account/category (from_* vs to_*).
- Expense amounts are signed: negative = money out, positive = refund.
- Adjustment amounts are signed corrections.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# SENTINELS - well-known "none" ids
# =============================================================================

NO_ACCOUNT_ID = "__NO_ACCOUNT__"
NO_CATEGORY_ID = "__NO_CATEGORY__"
NO_ACCOUNT_NAME = "No Account"
NO_CATEGORY_NAME = "No Category"


def is_real_account(account_id: Optional[str]) -> bool:
    """True for an account id that is tracked as a balance."""
    return bool(account_id) and account_id != NO_ACCOUNT_ID


def is_real_category(category_id: Optional[str]) -> bool:
    """True for a category id that is tracked as a balance."""
    return bool(category_id) and category_id != NO_CATEGORY_ID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


# =============================================================================
# TRANSACTIONS - tagged variants
# =============================================================================

class TransactionKind(str, Enum):
    """The four transaction variants."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class TransactionBase(BaseModel):
    """Fields shared by every transaction variant."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=_new_id,
        min_length=1,
        description="Unique transaction identifier"
    )
    # Required, no default: a `date = Field(...)` binding would shadow the type
    date: date
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Free-text note"
    )
    cleared: bool = Field(
        default=False,
        description="Has the transaction cleared the bank?"
    )


class Income(TransactionBase):
    """Money entering one account. No category effect."""

    kind: Literal["income"] = "income"
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive magnitude"
    )
    account_id: str = Field(..., min_length=1)
    payee: Optional[str] = Field(default=None, max_length=200)


class Expense(TransactionBase):
    """
    Spending (or a refund) against an account and a category.

    Negative amount = money out, positive amount = money in.
    """

    kind: Literal["expense"] = "expense"
    amount: Decimal
    account_id: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    payee: Optional[str] = Field(default=None, max_length=200)


class Transfer(TransactionBase):
    """
    Moves `amount` out of the from pair and into the to pair.

    Any endpoint may be a sentinel. Endpoint consistency is enforced by
    the transfer validity checker, not here.
    """

    kind: Literal["transfer"] = "transfer"
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive magnitude"
    )
    from_account_id: str = NO_ACCOUNT_ID
    to_account_id: str = NO_ACCOUNT_ID
    from_category_id: str = NO_CATEGORY_ID
    to_category_id: str = NO_CATEGORY_ID


class Adjustment(TransactionBase):
    """One-sided correction to an account and/or a category."""

    kind: Literal["adjustment"] = "adjustment"
    amount: Decimal
    account_id: str = NO_ACCOUNT_ID
    category_id: str = NO_CATEGORY_ID
    payee: Optional[str] = Field(default=None, max_length=200)


Transaction = Annotated[
    Union[Income, Expense, Transfer, Adjustment],
    Field(discriminator="kind"),
]


# =============================================================================
# BALANCES - stored vs derived shapes
# =============================================================================

class StoredAccountBalance(BaseModel):
    """
    The durable part of an account's month balance.

    start_balance is None when the month was never anchored.
    """

    account_id: str
    start_balance: Optional[Decimal] = None


class AccountBalance(StoredAccountBalance):
    """Full account balance for one month, derived from transactions."""

    start_balance: Decimal
    income: Decimal
    expenses: Decimal
    transfers: Decimal
    adjustments: Decimal
    net_change: Decimal
    end_balance: Decimal

    def to_stored(self) -> StoredAccountBalance:
        return StoredAccountBalance(
            account_id=self.account_id,
            start_balance=self.start_balance,
        )


class StoredCategoryBalance(BaseModel):
    """
    The durable part of a category's month balance.

    allocated is only meaningful once the month's allocations are finalized.
    """

    category_id: str
    start_balance: Optional[Decimal] = None
    allocated: Decimal = Decimal("0.00")


class CategoryBalance(StoredCategoryBalance):
    """Full category balance for one month, derived from transactions."""

    start_balance: Decimal
    spent: Decimal
    transfers: Decimal
    adjustments: Decimal
    end_balance: Decimal

    def to_stored(self, finalized: bool) -> StoredCategoryBalance:
        """Drop derived fields. Draft allocations are never stored."""
        return StoredCategoryBalance(
            category_id=self.category_id,
            start_balance=self.start_balance,
            allocated=self.allocated if finalized else Decimal("0.00"),
        )


class MonthStartBalances(BaseModel):
    """
    Payload of a partial month write: start balances only.

    This is the only thing the recalculation engine ever persists.
    """

    account_start_balances: dict[str, Decimal] = Field(default_factory=dict)
    category_start_balances: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.account_start_balances and not self.category_start_balances


class PreviousMonthSnapshot(BaseModel):
    """
    What one month hands to the next: committed end balances and income.

    An empty snapshot means "this is the very first month".
    """
    model_config = ConfigDict(frozen=True)

    account_end_balances: dict[str, Decimal] = Field(default_factory=dict)
    category_end_balances: dict[str, Decimal] = Field(default_factory=dict)
    total_income: Decimal = Decimal("0.00")

    @classmethod
    def empty(cls) -> "PreviousMonthSnapshot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.account_end_balances and not self.category_end_balances


# =============================================================================
# MONTHS
# =============================================================================

class MonthDocument(BaseModel):
    """
    A budget month as persisted: the transaction log plus anchor values.

    Identity is (budget_id, year, month).
    """

    budget_id: str = Field(..., min_length=1)
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)

    income: list[Income] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    transfers: list[Transfer] = Field(default_factory=list)
    adjustments: list[Adjustment] = Field(default_factory=list)

    account_balances: list[StoredAccountBalance] = Field(default_factory=list)
    category_balances: list[StoredCategoryBalance] = Field(default_factory=list)
    are_allocations_finalized: bool = False

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def ordinal(self) -> str:
        """Month-map key, YYYYMM."""
        return f"{self.year:04d}{self.month:02d}"

    @property
    def year_month(self) -> tuple[int, int]:
        return (self.year, self.month)

    def all_transactions(self) -> list[Transaction]:
        return [*self.income, *self.expenses, *self.transfers, *self.adjustments]

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self.all_transactions():
            if transaction.id == transaction_id:
                return transaction
        return None

    def with_transaction(self, transaction: Transaction) -> "MonthDocument":
        """Return a copy with the transaction added, or replaced by id."""
        stripped = self.without_transaction(transaction.id)
        field = _TRANSACTION_FIELDS[transaction.kind]
        return stripped.model_copy(update={
            field: [*getattr(stripped, field), transaction],
            "updated_at": _utcnow(),
        })

    def without_transaction(self, transaction_id: str) -> "MonthDocument":
        """Return a copy without the given transaction id."""
        update = {
            field: [t for t in getattr(self, field) if t.id != transaction_id]
            for field in _TRANSACTION_FIELDS.values()
        }
        update["updated_at"] = _utcnow()
        return self.model_copy(update=update)


_TRANSACTION_FIELDS = {
    TransactionKind.INCOME.value: "income",
    TransactionKind.EXPENSE.value: "expenses",
    TransactionKind.TRANSFER.value: "transfers",
    TransactionKind.ADJUSTMENT.value: "adjustments",
}


class RecalculatedMonth(MonthDocument):
    """
    A month with every balance derived.

    Lives only in memory (the cache). For an unfinalized month the category
    `allocated` values are live drafts shown for display.
    """

    account_balances: list[AccountBalance] = Field(default_factory=list)
    category_balances: list[CategoryBalance] = Field(default_factory=list)

    total_income: Decimal = Decimal("0.00")
    total_expenses: Decimal = Decimal("0.00")
    previous_month_income: Decimal = Decimal("0.00")

    def account_balance(self, account_id: str) -> Optional[AccountBalance]:
        for balance in self.account_balances:
            if balance.account_id == account_id:
                return balance
        return None

    def category_balance(self, category_id: str) -> Optional[CategoryBalance]:
        for balance in self.category_balances:
            if balance.category_id == category_id:
                return balance
        return None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'endpoint_mismatch', 'no_effect')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating a transaction before it is accepted."""

    transaction_id: Optional[str] = None
    kind: Optional[TransactionKind] = None
    validated_at: datetime = Field(default_factory=_utcnow)
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def first_error(self) -> Optional[str]:
        errors = self.errors
        return errors[0].message if errors else None
