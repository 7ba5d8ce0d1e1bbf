"""
In-Memory Storage Implementation

Keeps documents as JSON-mode dicts, the way a document store would, so
every read hands back a fresh object and nothing is shared with the cache.
Every write is recorded in `writes` for inspection.

Used for tests and for running the engine without a configured backend.
"""

from typing import Optional
from uuid import UUID

from budget_engine.calculations.calendar import month_ordinal
from budget_engine.calculations.window import apply_start_balances
from budget_engine.models.audit import AuditEvent
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import MonthDocument, MonthStartBalances
from budget_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    NotFoundError,
    StorageError,
)


class InMemoryBudgetStorage(BudgetStorageInterface):
    """
    Dict-backed budget storage.

    `fail_operations` names operations (e.g. "write_partial_month") that
    raise StorageError, to exercise failure handling.
    """

    def __init__(self):
        self._budgets: dict[str, dict] = {}
        self._months: dict[tuple[str, int, int], dict] = {}
        self.writes: list[tuple[str, str]] = []
        self.reads: list[tuple[str, str]] = []
        self.fail_operations: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_operations:
            raise StorageError(f"{operation} failed (injected)")

    def seed(self, budget: Budget, months: Optional[list[MonthDocument]] = None) -> None:
        """Load documents directly, without recording writes."""
        self._budgets[budget.id] = budget.model_dump(mode="json")
        for month in months or []:
            self._months[(month.budget_id, month.year, month.month)] = month.model_dump(mode="json")

    def clear_log(self) -> None:
        self.writes.clear()
        self.reads.clear()

    @property
    def write_count(self) -> int:
        return len(self.writes)

    async def read_month(
        self,
        budget_id: str,
        year: int,
        month: int,
    ) -> Optional[MonthDocument]:
        self._check("read_month")
        self.reads.append(("read_month", f"{budget_id}_{month_ordinal(year, month)}"))
        data = self._months.get((budget_id, year, month))
        return MonthDocument.model_validate(data) if data is not None else None

    async def read_budget(self, budget_id: str) -> Optional[Budget]:
        self._check("read_budget")
        self.reads.append(("read_budget", budget_id))
        data = self._budgets.get(budget_id)
        return Budget.model_validate(data) if data is not None else None

    async def write_partial_month(
        self,
        budget_id: str,
        year: int,
        month: int,
        start_balances: MonthStartBalances,
    ) -> bool:
        self._check("write_partial_month")
        key = (budget_id, year, month)
        data = self._months.get(key)
        if data is not None:
            document = MonthDocument.model_validate(data)
        else:
            document = MonthDocument(budget_id=budget_id, year=year, month=month)

        document = apply_start_balances(document, start_balances)
        self._months[key] = document.model_dump(mode="json")
        self.writes.append(("write_partial_month", f"{budget_id}_{month_ordinal(year, month)}"))
        return True

    async def write_budget_field(
        self,
        budget_id: str,
        month_map: Optional[set[str]] = None,
        percentage_income_months_back: Optional[int] = None,
    ) -> bool:
        self._check("write_budget_field")
        data = self._budgets.get(budget_id)
        if data is None:
            raise NotFoundError(f"Budget not found: {budget_id}")

        if month_map is not None:
            data["month_map"] = sorted(month_map)
        if percentage_income_months_back is not None:
            data["percentage_income_months_back"] = percentage_income_months_back
        self.writes.append(("write_budget_field", budget_id))
        return True

    async def save_month(self, month: MonthDocument) -> bool:
        self._check("save_month")
        self._months[(month.budget_id, month.year, month.month)] = month.model_dump(mode="json")
        self.writes.append(("save_month", f"{month.budget_id}_{month.ordinal}"))
        return True

    async def save_budget(self, budget: Budget) -> bool:
        self._check("save_budget")
        self._budgets[budget.id] = budget.model_dump(mode="json")
        self.writes.append(("save_budget", budget.id))
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
