"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a document database later
2. Use in-memory storage for testing
3. Keep the recalculation engine decoupled from storage implementation

Storage is assumed eventually consistent: a read right after a write may
not reflect it. The engine prefers its own cache and never re-reads to
confirm a write.

Writes from the recalculation engine are partial (start balances, single
budget fields). Whole-document saves exist for the mutation collaborators
that own the transaction log.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from budget_engine.models.audit import AuditEvent
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import MonthDocument, MonthStartBalances


class BudgetStorageInterface(ABC):
    """
    Abstract interface for budget and month storage.

    Any storage implementation (Google Sheets, a document store, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def read_month(
        self,
        budget_id: str,
        year: int,
        month: int,
    ) -> Optional[MonthDocument]:
        """
        Read one month.

        Args:
            budget_id: Owning budget
            year: Calendar year
            month: Calendar month (1-12)

        Returns:
            The stored month if it exists, None otherwise

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def read_budget(self, budget_id: str) -> Optional[Budget]:
        """
        Read a budget.

        Returns:
            The budget if found, None otherwise

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def write_partial_month(
        self,
        budget_id: str,
        year: int,
        month: int,
        start_balances: MonthStartBalances,
    ) -> bool:
        """
        Merge start balances into a month, creating the month if needed.

        Only the start_balance of the named accounts/categories changes;
        transactions and finalized allocations are left untouched.

        Returns:
            True if written successfully

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def write_budget_field(
        self,
        budget_id: str,
        month_map: Optional[set[str]] = None,
        percentage_income_months_back: Optional[int] = None,
    ) -> bool:
        """
        Update individual budget fields. Fields left as None are not touched.

        Returns:
            True if written successfully

        Raises:
            StorageError: If the write fails
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def save_month(self, month: MonthDocument) -> bool:
        """
        Save a whole month document (transaction log and stored balances).

        Raises:
            StorageError: If the save fails
        """
        pass

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        """
        Save a whole budget document.

        Raises:
            StorageError: If the save fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one recalculation pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Failed to connect to storage backend."""
    pass
