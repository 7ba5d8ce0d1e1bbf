"""
Read-Through Budget Cache

DESIGN DECISION: The cache is the single source of truth for balances.
Storage is written to but never re-read to confirm a write (it is only
eventually consistent), so everything the engine derives lands here and
readers render only what the cache holds.

Contents, per budget:
- the Budget (with computed balance fields after a pass)
- raw month documents, keyed (budget_id, year, month)
- recalculated months, keyed the same way
- the recalculation state machine entry

Invalidation contract:
- select_budget() with a different id: the old budget's in-flight pass
  becomes stale and both budgets' "has run" guards reset
- invalidate(): drops cached documents and results, bumps the generation
  and resets the guard
- record_month_edit() / record_budget_edit(): a mutation's write bumps the
  generation, so a pass that read the old value is discarded

A pass captures the generation when it starts and may only commit if the
budget is still active and the generation is unchanged.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

from budget_engine.audit import AuditLogger
from budget_engine.calculations.calendar import month_index, month_ordinal
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import MonthDocument, RecalculatedMonth
from budget_engine.services.storage import BudgetStorageInterface

if TYPE_CHECKING:
    import asyncio


MonthCacheKey = tuple[str, int, int]


class RecalculationState(str, Enum):
    """Per-budget recalculation guard."""
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class RecalculationStatus:
    """Guard entry for one budget, plus the error banner of the last failure."""

    def __init__(self):
        self.state = RecalculationState.IDLE
        self.task: Optional["asyncio.Task"] = None
        self.last_result: Optional[Any] = None
        self.error_message: Optional[str] = None
        self.banner_dismissed = False

    @property
    def banner(self) -> Optional[str]:
        """The dismissible failure message, if one should be shown."""
        if self.state == RecalculationState.FAILED and not self.banner_dismissed:
            return self.error_message
        return None


class BudgetCache:
    """
    Read-through cache over a BudgetStorageInterface.

    Reads that miss go to storage and are remembered. Commits of a
    recalculation pass replace results atomically (no await inside).
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

        self._budgets: dict[str, Budget] = {}
        self._documents: dict[MonthCacheKey, MonthDocument] = {}
        self._months: dict[MonthCacheKey, RecalculatedMonth] = {}

        self._status: dict[str, RecalculationStatus] = {}
        self._generations: dict[str, int] = {}
        self._active_budget_id: Optional[str] = None

    # =========================================================================
    # Budget identity
    # =========================================================================

    @property
    def active_budget_id(self) -> Optional[str]:
        return self._active_budget_id

    def select_budget(self, budget_id: str) -> None:
        """Make a budget the active one."""
        previous = self._active_budget_id
        if previous == budget_id:
            return

        self._active_budget_id = budget_id
        if previous is not None:
            self._bump_generation(previous)
            self._reset_guard(previous)
        self._reset_guard(budget_id)

    def generation(self, budget_id: str) -> int:
        return self._generations.get(budget_id, 0)

    def is_current(self, budget_id: str, generation: int) -> bool:
        """May a pass started at `generation` still commit?"""
        if self._active_budget_id is not None and self._active_budget_id != budget_id:
            return False
        return self.generation(budget_id) == generation

    def _bump_generation(self, budget_id: str) -> None:
        self._generations[budget_id] = self.generation(budget_id) + 1

    # =========================================================================
    # Read-through access
    # =========================================================================

    async def get_budget(
        self,
        budget_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Budget]:
        """Cached budget, fetched from storage on a miss."""
        budget = self._budgets.get(budget_id)
        if budget is not None:
            return budget

        if self._audit_logger:
            await self._audit_logger.log_cache_miss(budget_id, None, correlation_id)
        budget = await self._storage.read_budget(budget_id)
        if budget is not None:
            self._budgets[budget_id] = budget
        return budget

    async def get_month_document(
        self,
        budget_id: str,
        year: int,
        month: int,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[MonthDocument]:
        """Cached month document, fetched from storage on a miss."""
        key = (budget_id, year, month)
        document = self._documents.get(key)
        if document is not None:
            return document

        if self._audit_logger:
            await self._audit_logger.log_cache_miss(
                budget_id, month_ordinal(year, month), correlation_id
            )
        document = await self._storage.read_month(budget_id, year, month)
        if document is not None:
            self._documents[key] = document
        return document

    def peek_budget(self, budget_id: str) -> Optional[Budget]:
        return self._budgets.get(budget_id)

    def peek_month_document(self, budget_id: str, year: int, month: int) -> Optional[MonthDocument]:
        return self._documents.get((budget_id, year, month))

    def put_budget(self, budget: Budget) -> None:
        self._budgets[budget.id] = budget

    def put_month_document(self, document: MonthDocument) -> None:
        self._documents[(document.budget_id, document.year, document.month)] = document

    def record_month_edit(self, document: MonthDocument) -> None:
        """
        Store a month changed by a mutation.

        A pass already in flight read the old document and can no longer
        commit over it.
        """
        self.put_month_document(document)
        self._bump_generation(document.budget_id)

    def record_budget_edit(self, budget: Budget) -> None:
        """Store a budget changed by a mutation; in-flight passes become stale."""
        self.put_budget(budget)
        self._bump_generation(budget.id)

    # =========================================================================
    # Read surface for renderers
    # =========================================================================

    def get_recalculated_month(
        self,
        budget_id: str,
        year: int,
        month: int,
    ) -> Optional[RecalculatedMonth]:
        return self._months.get((budget_id, year, month))

    def recalculated_months(self, budget_id: str) -> list[RecalculatedMonth]:
        months = [m for (b, _, _), m in self._months.items() if b == budget_id]
        return sorted(months, key=lambda m: month_index(m.year, m.month))

    # =========================================================================
    # Commit and invalidation
    # =========================================================================

    def commit(
        self,
        budget_id: str,
        generation: int,
        budget: Budget,
        months: list[RecalculatedMonth],
        documents: list[MonthDocument],
    ) -> bool:
        """
        Publish a pass's results.

        Returns False (and changes nothing) if the pass is stale.
        """
        if not self.is_current(budget_id, generation):
            return False

        self._budgets[budget_id] = budget
        for document in documents:
            self._documents[(document.budget_id, document.year, document.month)] = document
        for month in months:
            self._months[(month.budget_id, month.year, month.month)] = month
        return True

    def invalidate(self, budget_id: Optional[str] = None) -> None:
        """Drop cached data for one budget, or for all budgets."""
        budget_ids = [budget_id] if budget_id else list(
            set(self._budgets) | set(self._status) | {key[0] for key in self._documents}
        )

        for target in budget_ids:
            self._budgets.pop(target, None)
            for key in [k for k in self._documents if k[0] == target]:
                del self._documents[key]
            for key in [k for k in self._months if k[0] == target]:
                del self._months[key]
            self._bump_generation(target)
            self._reset_guard(target)

    # =========================================================================
    # Recalculation state machine
    # =========================================================================

    def status(self, budget_id: str) -> RecalculationStatus:
        if budget_id not in self._status:
            self._status[budget_id] = RecalculationStatus()
        return self._status[budget_id]

    def begin(self, budget_id: str, task: "asyncio.Task") -> None:
        """IDLE/DONE/FAILED -> RUNNING."""
        status = self.status(budget_id)
        if status.state == RecalculationState.RUNNING:
            raise RuntimeError(f"Recalculation already running for budget {budget_id}")
        status.state = RecalculationState.RUNNING
        status.task = task

    def finish(self, budget_id: str, result: Any) -> None:
        """RUNNING -> DONE."""
        status = self.status(budget_id)
        status.state = RecalculationState.DONE
        status.task = None
        status.last_result = result
        status.error_message = None
        status.banner_dismissed = False

    def fail(self, budget_id: str, message: str) -> None:
        """RUNNING -> FAILED. Cached results from the last good pass stay."""
        status = self.status(budget_id)
        status.state = RecalculationState.FAILED
        status.task = None
        status.error_message = message
        status.banner_dismissed = False

    def release(self, budget_id: str) -> None:
        """RUNNING -> IDLE, for a pass whose results were discarded."""
        status = self.status(budget_id)
        status.state = RecalculationState.IDLE
        status.task = None

    def _reset_guard(self, budget_id: str) -> None:
        status = self.status(budget_id)
        # A running pass keeps its state; it will discard itself on commit
        if status.state != RecalculationState.RUNNING:
            status.state = RecalculationState.IDLE
            status.last_result = None

    def is_blocked(self, budget_id: str) -> bool:
        """Edits are blocked after a failed pass until a retry succeeds."""
        return self.status(budget_id).state == RecalculationState.FAILED

    def dismiss_error(self, budget_id: str) -> None:
        self.status(budget_id).banner_dismissed = True
