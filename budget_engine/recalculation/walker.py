"""
Chain Walker

Finds the nearest anchor month and re-derives every month from it forward.

Algorithm:
1. Start the anchor search at the first window month (now - K), or at an
   older edited month when the caller passes one.
2. Walk backward month by month until a month with a usable persisted
   start balance is found. Stop at the earliest month of the budget, or
   after max_walk_back_months, and start from zero there.
3. Walk forward through every existing month from the anchor to the
   horizon, threading the committed snapshot from month to month.
4. Months at or before the window boundary whose start balances are
   missing or changed are queued for a partial write.

DESIGN DECISION: walk() computes and persist() writes. The recalculation
flow checks for a stale pass between the two, so a discarded pass never
touches storage.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from budget_engine.audit import AuditLogger
from budget_engine.calculations.allocations import effective_months_back
from budget_engine.calculations.calculator import (
    detect_precision_drift,
    extract_snapshot,
    recalculate_month,
)
from budget_engine.calculations.calendar import (
    YearMonth,
    month_index,
    month_ordinal,
    next_month,
    parse_ordinal,
    previous_month,
    shift_month,
)
from budget_engine.calculations.currency import ZERO, round_currency, sum_currency
from budget_engine.calculations.window import (
    PersistenceWindow,
    anchor_snapshot,
    apply_start_balances,
    has_anchor,
    needs_start_balance_write,
    start_balance_payload,
)
from budget_engine.config.settings import EngineSettings
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import (
    MonthDocument,
    MonthStartBalances,
    PreviousMonthSnapshot,
    RecalculatedMonth,
)
from budget_engine.recalculation.cache import BudgetCache
from budget_engine.services.storage import BudgetStorageInterface, StorageError


logger = structlog.get_logger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class RecalculationError(Exception):
    """
    The single failure of a recalculation pass.

    Wraps every storage error hit during the pass. Partial writes that
    succeeded before the failure are not rolled back.
    """

    def __init__(self, budget_id: str, errors: list[Exception]):
        self.budget_id = budget_id
        self.errors = errors
        first = str(errors[0]) if errors else "unknown error"
        super().__init__(
            f"Recalculation of budget {budget_id} failed with "
            f"{len(errors)} storage error(s): {first}"
        )

    @property
    def messages(self) -> list[str]:
        return [str(error) for error in self.errors]


# =============================================================================
# PROGRESS
# =============================================================================

class RecalculationPhase(str, Enum):
    READING_BUDGET = "reading_budget"
    FETCHING_MONTHS = "fetching_months"
    RECALCULATING = "recalculating"
    SAVING = "saving"
    COMPLETE = "complete"


class RecalculationProgress(BaseModel):
    """Progress report handed to a pass's callback."""

    budget_id: str
    phase: RecalculationPhase
    months_total: int = 0
    months_done: int = 0
    message: Optional[str] = None

    @property
    def percent(self) -> int:
        if self.phase == RecalculationPhase.COMPLETE:
            return 100
        if self.months_total == 0:
            return 0
        return int(self.months_done * 100 / self.months_total)


ProgressCallback = Callable[[RecalculationProgress], None]


def report_progress(
    on_progress: Optional[ProgressCallback],
    budget_id: str,
    phase: RecalculationPhase,
    months_total: int = 0,
    months_done: int = 0,
    message: Optional[str] = None,
) -> None:
    if on_progress is None:
        return
    on_progress(RecalculationProgress(
        budget_id=budget_id,
        phase=phase,
        months_total=months_total,
        months_done=months_done,
        message=message,
    ))


# =============================================================================
# RESULTS
# =============================================================================

class AnchorSource(str, Enum):
    """Where the forward walk starts from."""
    PERSISTED = "persisted"            # a stored start balance
    EARLIEST_MONTH = "earliest_month"  # oldest month of the budget, from zero
    WALK_LIMIT = "walk_limit"          # backward walk gave up, from zero
    EMPTY_BUDGET = "empty_budget"


class ChainAnchor(BaseModel):
    year: int
    month: int
    source: AnchorSource
    snapshot: PreviousMonthSnapshot
    months_walked_back: int = 0

    @property
    def ordinal(self) -> str:
        return month_ordinal(self.year, self.month)

    @property
    def is_persisted(self) -> bool:
        return self.source == AnchorSource.PERSISTED


class PendingStartBalanceWrite(BaseModel):
    year: int
    month: int
    payload: MonthStartBalances

    @property
    def ordinal(self) -> str:
        return month_ordinal(self.year, self.month)


class ChainWalkResult(BaseModel):
    """Everything one forward walk derived, before anything is written."""

    budget_id: str
    anchor: Optional[ChainAnchor] = None
    months: list[RecalculatedMonth] = Field(default_factory=list)
    documents: list[MonthDocument] = Field(default_factory=list)
    pending_writes: list[PendingStartBalanceWrite] = Field(default_factory=list)

    @property
    def ordinals(self) -> list[str]:
        return [month.ordinal for month in self.months]


# =============================================================================
# WALKER
# =============================================================================

class ChainWalker:
    """
    Walks a budget's months through the cache.

    Reads go through the BudgetCache; partial writes go straight to
    storage and are merged into the cached documents on success.
    """

    def __init__(
        self,
        cache: BudgetCache,
        storage: BudgetStorageInterface,
        settings: Optional[EngineSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._cache = cache
        self._storage = storage
        self._settings = settings or EngineSettings()
        self._audit_logger = audit_logger
        self._reported_drift: set[tuple[str, str, str]] = set()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # =========================================================================
    # Anchor search
    # =========================================================================

    async def find_anchor(
        self,
        budget: Budget,
        search_from: YearMonth,
        correlation_id: Optional[UUID] = None,
    ) -> ChainAnchor:
        """
        Nearest month at or before `search_from` with a usable start balance.

        Never raises for a missing anchor: the chain then starts from zero
        at the earliest month reached, and an anchor_missing warning is
        logged.
        """
        if not budget.month_map:
            return ChainAnchor(
                year=search_from[0],
                month=search_from[1],
                source=AnchorSource.EMPTY_BUDGET,
                snapshot=PreviousMonthSnapshot.empty(),
            )

        earliest = parse_ordinal(budget.earliest_ordinal)
        cursor = search_from
        oldest_visited: Optional[YearMonth] = None

        for walked in range(self._settings.max_walk_back_months + 1):
            if month_index(*cursor) < month_index(*earliest):
                return await self._start_from_zero(
                    budget, earliest, AnchorSource.EARLIEST_MONTH, walked, correlation_id
                )

            if month_ordinal(*cursor) in budget.month_map:
                oldest_visited = cursor
                document = await self._load_month(budget, *cursor, correlation_id=correlation_id)
                if has_anchor(document):
                    if self._audit_logger:
                        await self._audit_logger.log_anchor_found(
                            budget.id, month_ordinal(*cursor), walked, correlation_id
                        )
                    return ChainAnchor(
                        year=cursor[0],
                        month=cursor[1],
                        source=AnchorSource.PERSISTED,
                        snapshot=anchor_snapshot(document),
                        months_walked_back=walked,
                    )

            cursor = previous_month(*cursor)

        # Gave up: restart from zero at the oldest existing month seen, or at
        # the first existing month after where the walk stopped.
        if oldest_visited is None:
            later = [o for o in budget.sorted_ordinals if o > month_ordinal(*cursor)]
            oldest_visited = parse_ordinal(later[0]) if later else next_month(*cursor)

        return await self._start_from_zero(
            budget,
            oldest_visited,
            AnchorSource.WALK_LIMIT,
            self._settings.max_walk_back_months,
            correlation_id,
        )

    async def _start_from_zero(
        self,
        budget: Budget,
        start: YearMonth,
        source: AnchorSource,
        walked: int,
        correlation_id: Optional[UUID],
    ) -> ChainAnchor:
        logger.warning(
            "anchor_missing",
            budget_id=budget.id,
            start=month_ordinal(*start),
            source=source.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_anchor_missing(
                budget.id, month_ordinal(*start), source.value, correlation_id
            )
        return ChainAnchor(
            year=start[0],
            month=start[1],
            source=source,
            snapshot=PreviousMonthSnapshot.empty(),
            months_walked_back=walked,
        )

    # =========================================================================
    # Forward walk
    # =========================================================================

    async def walk(
        self,
        budget: Budget,
        now: YearMonth,
        from_month: Optional[YearMonth] = None,
        correlation_id: Optional[UUID] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ChainWalkResult:
        """
        Re-derive every month from the anchor through the horizon.

        Args:
            budget: The budget being walked
            now: The current (year, month)
            from_month: An edited month; the anchor search starts there if
                it is older than the window
            correlation_id: Ties audit events to the pass
            on_progress: Receives fetching/recalculating progress

        Returns:
            The derived months and the partial writes they need.

        Raises:
            StorageError: If a month cannot be read
        """
        window = PersistenceWindow.from_settings(now, self._settings)

        if not budget.month_map:
            return ChainWalkResult(
                budget_id=budget.id,
                anchor=await self.find_anchor(budget, window.first_month, correlation_id),
            )

        search_from = window.first_month
        if from_month is not None and month_index(*from_month) < month_index(*search_from):
            search_from = from_month

        report_progress(on_progress, budget.id, RecalculationPhase.FETCHING_MONTHS)
        anchor = await self.find_anchor(budget, search_from, correlation_id)

        ordinals = [
            ordinal for ordinal in budget.sorted_ordinals
            if anchor.ordinal <= ordinal <= window.horizon_ordinal
        ]
        months_back = effective_months_back(
            budget, self._settings.default_percentage_income_months_back
        )

        result = ChainWalkResult(budget_id=budget.id, anchor=anchor)
        incomes: dict[str, Decimal] = {}
        snapshot = anchor.snapshot

        for done, ordinal in enumerate(ordinals):
            year, month = parse_ordinal(ordinal)
            document = await self._load_month(budget, year, month, correlation_id=correlation_id)
            previous_income = await self._income_months_back(
                budget, year, month, 1, incomes, correlation_id
            )
            income_back = await self._income_months_back(
                budget, year, month, months_back, incomes, correlation_id
            )

            recalculated = recalculate_month(
                document, snapshot, budget, previous_income, income_back
            )
            incomes[ordinal] = recalculated.total_income
            snapshot = extract_snapshot(recalculated)

            result.months.append(recalculated)
            result.documents.append(document)

            if window.is_at_or_before_boundary(year, month) and needs_start_balance_write(
                document, recalculated
            ):
                result.pending_writes.append(PendingStartBalanceWrite(
                    year=year,
                    month=month,
                    payload=start_balance_payload(recalculated),
                ))

            report_progress(
                on_progress,
                budget.id,
                RecalculationPhase.RECALCULATING,
                months_total=len(ordinals),
                months_done=done + 1,
                message=ordinal,
            )

        logger.debug(
            "chain_walked",
            budget_id=budget.id,
            anchor=anchor.ordinal,
            source=anchor.source.value,
            months=len(result.months),
            pending_writes=len(result.pending_writes),
        )
        return result

    async def _income_months_back(
        self,
        budget: Budget,
        year: int,
        month: int,
        months_back: int,
        incomes: dict[str, Decimal],
        correlation_id: Optional[UUID],
    ) -> Decimal:
        """Total income of the month N months before (year, month)."""
        ordinal = month_ordinal(*shift_month(year, month, -months_back))
        if ordinal in incomes:
            return incomes[ordinal]
        if ordinal not in budget.month_map:
            return ZERO

        document = await self._load_month(
            budget, *parse_ordinal(ordinal), correlation_id=correlation_id
        )
        income = sum_currency(i.amount for i in document.income)
        incomes[ordinal] = income
        return income

    async def _load_month(
        self,
        budget: Budget,
        year: int,
        month: int,
        correlation_id: Optional[UUID] = None,
    ) -> MonthDocument:
        """
        Read a month through the cache.

        A month listed in month_map but absent from storage is created empty
        in the cache (storage is only eventually consistent). Stored values
        with sub-cent drift are reported once per month and field.
        """
        document = await self._cache.get_month_document(budget.id, year, month, correlation_id)
        if document is None:
            document = MonthDocument(budget_id=budget.id, year=year, month=month)
            self._cache.put_month_document(document)

        for field, raw_value in detect_precision_drift(document):
            key = (budget.id, document.ordinal, field)
            if key in self._reported_drift:
                continue
            self._reported_drift.add(key)
            if self._audit_logger:
                await self._audit_logger.log_precision_drift(
                    budget.id,
                    document.ordinal,
                    field,
                    raw_value,
                    round_currency(raw_value),
                    correlation_id,
                )

        return document

    # =========================================================================
    # Persistence
    # =========================================================================

    async def persist(
        self,
        result: ChainWalkResult,
        correlation_id: Optional[UUID] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[MonthDocument]:
        """
        Issue the walk's partial start-balance writes.

        Every write is attempted. Returns the walked documents with
        successful writes merged in.

        Raises:
            RecalculationError: If any write failed
        """
        documents = {document.ordinal: document for document in result.documents}
        errors: list[Exception] = []

        for done, write in enumerate(result.pending_writes):
            report_progress(
                on_progress,
                result.budget_id,
                RecalculationPhase.SAVING,
                months_total=len(result.pending_writes),
                months_done=done,
                message=write.ordinal,
            )
            try:
                await self._storage.write_partial_month(
                    result.budget_id, write.year, write.month, write.payload
                )
            except StorageError as e:
                errors.append(e)
                logger.error(
                    "start_balance_write_failed",
                    budget_id=result.budget_id,
                    month=write.ordinal,
                    error=str(e),
                )
                if self._audit_logger:
                    await self._audit_logger.log_storage_error(
                        "write_partial_month", str(e), correlation_id
                    )
                continue

            documents[write.ordinal] = apply_start_balances(documents[write.ordinal], write.payload)
            if self._audit_logger:
                await self._audit_logger.log_start_balances_persisted(
                    result.budget_id,
                    write.ordinal,
                    len(write.payload.account_start_balances),
                    len(write.payload.category_start_balances),
                    correlation_id,
                )

        if errors:
            raise RecalculationError(result.budget_id, errors)

        return [documents[ordinal] for ordinal in sorted(documents)]
