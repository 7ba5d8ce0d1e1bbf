"""
Data Models Package

This package contains all Pydantic models used by the Budget Engine.
All data flowing through the engine must conform to these schemas.
"""

from budget_engine.models.ledger import (
    NO_ACCOUNT_ID,
    NO_ACCOUNT_NAME,
    NO_CATEGORY_ID,
    NO_CATEGORY_NAME,
    AccountBalance,
    Adjustment,
    CategoryBalance,
    Expense,
    Income,
    MonthDocument,
    MonthStartBalances,
    PreviousMonthSnapshot,
    RecalculatedMonth,
    StoredAccountBalance,
    StoredCategoryBalance,
    Transaction,
    TransactionKind,
    Transfer,
    ValidationIssue,
    ValidationResult,
    is_real_account,
    is_real_category,
)
from budget_engine.models.budget import (
    Account,
    AccountGroup,
    Budget,
    Category,
    CategoryGroup,
    DefaultAllocationType,
)
from budget_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Sentinels
    "NO_ACCOUNT_ID",
    "NO_ACCOUNT_NAME",
    "NO_CATEGORY_ID",
    "NO_CATEGORY_NAME",
    "is_real_account",
    "is_real_category",
    # Transactions
    "Adjustment",
    "Expense",
    "Income",
    "Transaction",
    "TransactionKind",
    "Transfer",
    # Balances and months
    "AccountBalance",
    "CategoryBalance",
    "MonthDocument",
    "MonthStartBalances",
    "PreviousMonthSnapshot",
    "RecalculatedMonth",
    "StoredAccountBalance",
    "StoredCategoryBalance",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Budget
    "Account",
    "AccountGroup",
    "Budget",
    "Category",
    "CategoryGroup",
    "DefaultAllocationType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
