"""Services package."""

from budget_engine.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "NotFoundError",
    "StorageError",
]
