"""
Main Orchestrator for the Budget Engine

This module ties together all the components and defines the
end-to-end flows for:
1. Recalculation (load budget → find anchor → walk forward → persist anchors → commit)
2. Ledger mutation (validate → save month → register month → recalculate)

DESIGN DECISION: The orchestrator enforces the boundaries:
- At most one recalculation pass per budget is in flight
- A stale pass (budget switched or cache invalidated) never commits
- Mutations are blocked while a budget's last pass has failed
- Every step is audited

"now" is always a parameter. Nothing in the engine reads the clock.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from budget_engine.audit import AuditLogger, create_correlation_id
from budget_engine.calculations.aggregates import (
    calculate_all_time_category_balances,
    calculate_current_account_balances,
    calculate_ready_to_assign,
)
from budget_engine.calculations.allocations import (
    effective_months_back,
    finalize_month_allocations,
    resolve_draft_allocations,
)
from budget_engine.calculations.calendar import (
    YearMonth,
    ensure_can_create_month,
    month_index,
    month_ordinal,
    shift_month,
)
from budget_engine.calculations.currency import ZERO, Amount, sum_currency
from budget_engine.calculations.window import PersistenceWindow
from budget_engine.config import EngineSettings, get_settings
from budget_engine.models.audit import AuditEventType
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import MonthDocument, Transaction
from budget_engine.recalculation import (
    AnchorSource,
    BudgetCache,
    ChainWalker,
    ProgressCallback,
    RecalculationError,
    RecalculationPhase,
    RecalculationState,
    report_progress,
)
from budget_engine.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    NotFoundError,
    StorageError,
)
from budget_engine.validation.validator import TransactionValidator


logger = structlog.get_logger(__name__)


class RecalculationTrigger(str, Enum):
    """What asked for a pass."""
    INITIAL_LOAD = "initial_load"
    MUTATION = "mutation"
    MANUAL = "manual"


class RecalculationOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"      # initial load of a budget already done
    DISCARDED = "discarded"  # budget changed mid-pass


class RecalculationResult(BaseModel):
    """Summary of one recalculation pass."""

    budget_id: str
    trigger: RecalculationTrigger
    outcome: RecalculationOutcome
    correlation_id: UUID
    months_recalculated: list[str] = Field(default_factory=list)
    anchor_ordinal: Optional[str] = None
    anchor_source: Optional[AnchorSource] = None
    writes: int = 0
    account_balances: dict[str, Decimal] = Field(default_factory=dict)
    category_balances: dict[str, Decimal] = Field(default_factory=dict)
    ready_to_assign: Decimal = ZERO
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecalculationBlockedError(RuntimeError):
    """An edit was attempted while the budget's last recalculation failed."""

    def __init__(self, budget_id: str, reason: Optional[str] = None):
        self.budget_id = budget_id
        self.reason = reason
        message = "Balances could not be recalculated. Retry before making changes."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


def _with_balances(
    budget: Budget,
    account_balances: Mapping[str, Decimal],
    category_balances: Mapping[str, Decimal],
) -> Budget:
    """Copy of the budget with current balances on its accounts and categories."""
    accounts = {
        account_id: account.model_copy(update={"balance": account_balances.get(account_id, ZERO)})
        for account_id, account in budget.accounts.items()
    }
    categories = {
        category_id: category.model_copy(update={"balance": category_balances.get(category_id, ZERO)})
        for category_id, category in budget.categories.items()
    }
    return budget.model_copy(update={"accounts": accounts, "categories": categories})


class RecalculationFlow:
    """
    Orchestrates a recalculation pass.

    Flow:
    1. Guard → share a running pass, skip a repeated initial load
    2. Read → budget through the cache
    3. Walk → anchor search and forward derivation (ChainWalker)
    4. Check → discard if the budget changed meanwhile
    5. Persist → partial start-balance writes
    6. Commit → months, documents and budget balances into the cache

    Any storage failure fails the whole pass with one RecalculationError
    and leaves the last good cache state visible.
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        cache: Optional[BudgetCache] = None,
        walker: Optional[ChainWalker] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().engine
        self._audit_logger = audit_logger
        self._cache = cache or BudgetCache(storage, audit_logger)
        self._walker = walker or ChainWalker(self._cache, storage, self._settings, audit_logger)
        # Oldest edited month of a failed pass; its retry must search from there
        self._retry_from: dict[str, YearMonth] = {}

    @property
    def cache(self) -> BudgetCache:
        return self._cache

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    async def load_budget(
        self,
        budget_id: str,
        now: YearMonth,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecalculationResult:
        """Select a budget and run its initial-load pass."""
        self._cache.select_budget(budget_id)
        return await self.recalculate(
            budget_id, now, RecalculationTrigger.INITIAL_LOAD, on_progress=on_progress
        )

    async def recalculate_all(
        self,
        budget_id: str,
        now: YearMonth,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecalculationResult:
        """The explicit "recalculate all" action: drop the cache and walk again."""
        self._cache.invalidate(budget_id)
        return await self.recalculate(
            budget_id, now, RecalculationTrigger.MANUAL, on_progress=on_progress
        )

    async def recalculate(
        self,
        budget_id: str,
        now: YearMonth,
        trigger: RecalculationTrigger = RecalculationTrigger.INITIAL_LOAD,
        from_month: Optional[YearMonth] = None,
        correlation_id: Optional[UUID] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecalculationResult:
        """
        The recalculation entry point.

        Args:
            budget_id: Budget to recalculate
            now: The current (year, month)
            trigger: What asked for the pass
            from_month: Oldest edited month, when a mutation touched one
                older than the window
            correlation_id: Ties the pass's audit events together
            on_progress: Receives RecalculationProgress updates

        Returns:
            RecalculationResult with outcome completed, skipped or discarded

        Raises:
            RecalculationError: If any storage read or write failed
        """
        correlation_id = correlation_id or create_correlation_id()
        status = self._cache.status(budget_id)

        if status.state == RecalculationState.RUNNING and trigger == RecalculationTrigger.INITIAL_LOAD:
            return await status.task

        # A mutation must see its own edit, so it waits out the running pass
        # and then walks again.
        while status.state == RecalculationState.RUNNING and status.task is not None:
            in_flight = status.task
            await asyncio.wait([in_flight])
            if status.task is in_flight:
                self._cache.release(budget_id)

        if (
            trigger == RecalculationTrigger.INITIAL_LOAD
            and status.state == RecalculationState.DONE
            and status.last_result is not None
        ):
            if self._audit_logger:
                await self._audit_logger.log_recalculation_skipped(
                    budget_id, "already recalculated", correlation_id
                )
            return status.last_result.model_copy(update={
                "outcome": RecalculationOutcome.SKIPPED,
                "trigger": trigger,
                "correlation_id": correlation_id,
            })

        retry_from = self._retry_from.get(budget_id)
        if retry_from is not None and (
            from_month is None or month_index(*retry_from) < month_index(*from_month)
        ):
            from_month = retry_from

        task = asyncio.ensure_future(
            self._run_pass(budget_id, now, trigger, from_month, correlation_id, on_progress)
        )
        self._cache.begin(budget_id, task)
        return await task

    async def _run_pass(
        self,
        budget_id: str,
        now: YearMonth,
        trigger: RecalculationTrigger,
        from_month: Optional[YearMonth],
        correlation_id: UUID,
        on_progress: Optional[ProgressCallback],
    ) -> RecalculationResult:
        generation = self._cache.generation(budget_id)

        if self._audit_logger:
            await self._audit_logger.log_recalculation_started(budget_id, trigger.value, correlation_id)

        try:
            report_progress(on_progress, budget_id, RecalculationPhase.READING_BUDGET)
            budget = await self._cache.get_budget(budget_id, correlation_id)
            if budget is None:
                raise NotFoundError(f"Budget not found: {budget_id}")

            walk = await self._walker.walk(budget, now, from_month, correlation_id, on_progress)

            if not self._cache.is_current(budget_id, generation):
                return await self._discard(budget_id, trigger, correlation_id)

            report_progress(
                on_progress,
                budget_id,
                RecalculationPhase.SAVING,
                months_total=len(walk.pending_writes),
            )
            documents = await self._walker.persist(walk, correlation_id, on_progress)

            window = PersistenceWindow.from_settings(now, self._settings)
            account_balances = calculate_current_account_balances(walk.months, now, budget.accounts)
            category_balances = calculate_all_time_category_balances(
                walk.months, now, window.horizon, budget.categories
            )
            updated = _with_balances(budget, account_balances, category_balances)
            ready_to_assign = calculate_ready_to_assign(updated, category_balances)

            if not self._cache.commit(budget_id, generation, updated, walk.months, documents):
                return await self._discard(budget_id, trigger, correlation_id)

            result = RecalculationResult(
                budget_id=budget_id,
                trigger=trigger,
                outcome=RecalculationOutcome.COMPLETED,
                correlation_id=correlation_id,
                months_recalculated=walk.ordinals,
                anchor_ordinal=walk.anchor.ordinal if walk.anchor else None,
                anchor_source=walk.anchor.source if walk.anchor else None,
                writes=len(walk.pending_writes),
                account_balances=account_balances,
                category_balances=category_balances,
                ready_to_assign=ready_to_assign,
            )
            self._cache.finish(budget_id, result)

        except asyncio.CancelledError:
            self._cache.release(budget_id)
            raise
        except RecalculationError as e:
            await self._fail(budget_id, e, from_month, correlation_id)
            raise
        except StorageError as e:
            error = RecalculationError(budget_id, [e])
            await self._fail(budget_id, error, from_month, correlation_id)
            raise error from e
        except Exception as e:
            self._cache.fail(budget_id, str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"budget_id": budget_id},
                    correlation_id=correlation_id,
                )
            raise

        self._retry_from.pop(budget_id, None)

        report_progress(on_progress, budget_id, RecalculationPhase.COMPLETE)
        if self._audit_logger:
            await self._audit_logger.log_recalculation_completed(
                budget_id, len(walk.months), result.writes, correlation_id
            )
        return result

    async def _discard(
        self,
        budget_id: str,
        trigger: RecalculationTrigger,
        correlation_id: UUID,
    ) -> RecalculationResult:
        self._cache.release(budget_id)
        logger.info(
            "recalculation_discarded",
            budget_id=budget_id,
            active_budget_id=self._cache.active_budget_id,
        )
        if self._audit_logger:
            await self._audit_logger.log_recalculation_discarded(
                budget_id, self._cache.active_budget_id, correlation_id
            )
        return RecalculationResult(
            budget_id=budget_id,
            trigger=trigger,
            outcome=RecalculationOutcome.DISCARDED,
            correlation_id=correlation_id,
        )

    async def _fail(
        self,
        budget_id: str,
        error: RecalculationError,
        from_month: Optional[YearMonth],
        correlation_id: UUID,
    ) -> None:
        self._cache.fail(budget_id, str(error))
        if from_month is not None:
            self._retry_from[budget_id] = from_month
        logger.error("recalculation_failed", budget_id=budget_id, errors=error.messages)
        if self._audit_logger:
            await self._audit_logger.log_recalculation_failed(
                budget_id, error.messages, correlation_id
            )

    def dismiss_error(self, budget_id: str) -> None:
        """Hide the failure banner. Edits stay blocked until a retry succeeds."""
        self._cache.dismiss_error(budget_id)


class LedgerMutationFlow:
    """
    Orchestrates edits to a budget's months.

    Flow for every mutation:
    1. Guard → refuse while the last pass failed
    2. Validate → blocking rules (transfer endpoints, adjustment target)
    3. Month → open or create the month (creation rules apply)
    4. Save → whole month document, then the cache
    5. Register → add the month and later window months to month_map
    6. Recalculate → from the edited month

    Recalculation is never automatic in storage; this flow always calls it.
    """

    def __init__(
        self,
        recalculation: RecalculationFlow,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._recalculation = recalculation
        self._storage = storage
        self._audit_logger = audit_logger

    @property
    def _cache(self) -> BudgetCache:
        return self._recalculation.cache

    @property
    def _settings(self) -> EngineSettings:
        return self._recalculation.settings

    # =========================================================================
    # Transactions
    # =========================================================================

    async def add_transaction(
        self,
        budget_id: str,
        transaction: Transaction,
        now: YearMonth,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """Validate and add a transaction to the month of its date."""
        correlation_id = correlation_id or create_correlation_id()
        self._ensure_not_blocked(budget_id)

        budget = await self._require_budget(budget_id, correlation_id)
        await self._validate(budget, transaction, correlation_id)

        year, month = transaction.date.year, transaction.date.month
        document = await self._month_for_edit(budget, year, month, now, correlation_id)
        await self._save_month(document.with_transaction(transaction))
        await self._register_months(budget, year, month, now)

        if self._audit_logger:
            await self._audit_logger.log_transaction_changed(
                AuditEventType.TRANSACTION_ADDED,
                budget_id,
                month_ordinal(year, month),
                transaction.id,
                transaction.kind,
                correlation_id,
            )

        return await self._recalculate(budget_id, now, (year, month), correlation_id)

    async def update_transaction(
        self,
        budget_id: str,
        transaction: Transaction,
        now: YearMonth,
        original_month: Optional[YearMonth] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """
        Replace a transaction by id.

        If its date moved to another month, pass the month it was stored
        in as `original_month`; it is removed there and added to the new one.
        """
        correlation_id = correlation_id or create_correlation_id()
        self._ensure_not_blocked(budget_id)

        budget = await self._require_budget(budget_id, correlation_id)
        await self._validate(budget, transaction, correlation_id)

        target = (transaction.date.year, transaction.date.month)
        source = original_month or target

        source_document = await self._existing_month(budget, *source, correlation_id)
        if source_document.find_transaction(transaction.id) is None:
            raise NotFoundError(
                f"Transaction {transaction.id} not found in {month_ordinal(*source)}"
            )

        if source == target:
            await self._save_month(source_document.with_transaction(transaction))
        else:
            target_document = await self._month_for_edit(budget, *target, now, correlation_id)
            await self._save_month(source_document.without_transaction(transaction.id))
            await self._save_month(target_document.with_transaction(transaction))
            await self._register_months(budget, *target, now)

        if self._audit_logger:
            await self._audit_logger.log_transaction_changed(
                AuditEventType.TRANSACTION_UPDATED,
                budget_id,
                month_ordinal(*target),
                transaction.id,
                transaction.kind,
                correlation_id,
            )

        oldest = min(source, target, key=lambda ym: month_index(*ym))
        return await self._recalculate(budget_id, now, oldest, correlation_id)

    async def delete_transaction(
        self,
        budget_id: str,
        year: int,
        month: int,
        transaction_id: str,
        now: YearMonth,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        correlation_id = correlation_id or create_correlation_id()
        self._ensure_not_blocked(budget_id)

        budget = await self._require_budget(budget_id, correlation_id)
        document = await self._existing_month(budget, year, month, correlation_id)
        transaction = document.find_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found in {month_ordinal(year, month)}"
            )

        await self._save_month(document.without_transaction(transaction_id))

        if self._audit_logger:
            await self._audit_logger.log_transaction_changed(
                AuditEventType.TRANSACTION_DELETED,
                budget_id,
                month_ordinal(year, month),
                transaction_id,
                transaction.kind,
                correlation_id,
            )

        return await self._recalculate(budget_id, now, (year, month), correlation_id)

    # =========================================================================
    # Allocations and budget settings
    # =========================================================================

    async def finalize_allocations(
        self,
        budget_id: str,
        year: int,
        month: int,
        now: YearMonth,
        allocations: Optional[Mapping[str, Amount]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """
        Lock a month's allocations.

        Without explicit amounts, the month's current draft allocations
        are locked in as they are displayed.
        """
        correlation_id = correlation_id or create_correlation_id()
        self._ensure_not_blocked(budget_id)

        budget = await self._require_budget(budget_id, correlation_id)
        document = await self._month_for_edit(budget, year, month, now, correlation_id)

        if allocations is None:
            allocations = await self._draft_allocations(budget, year, month, correlation_id)

        finalized = finalize_month_allocations(document, allocations, budget.categories)
        await self._save_month(finalized)
        await self._register_months(budget, year, month, now)

        if self._audit_logger:
            await self._audit_logger.log_allocations_finalized(
                budget_id,
                month_ordinal(year, month),
                sum_currency(b.allocated for b in finalized.category_balances),
                correlation_id,
            )

        return await self._recalculate(budget_id, now, (year, month), correlation_id)

    async def set_percentage_income_months_back(
        self,
        budget_id: str,
        months_back: int,
        now: YearMonth,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """Change the income lookback N. Finalized months keep their amounts."""
        correlation_id = correlation_id or create_correlation_id()
        self._ensure_not_blocked(budget_id)

        budget = await self._require_budget(budget_id, correlation_id)
        # Raises pydantic.ValidationError outside 1..12
        updated = Budget.model_validate({
            **budget.model_dump(),
            "percentage_income_months_back": months_back,
        })

        await self._storage.write_budget_field(
            budget_id, percentage_income_months_back=months_back
        )
        self._cache.record_budget_edit(updated)

        if self._audit_logger:
            await self._audit_logger.log_budget_settings_updated(
                budget_id,
                {"percentage_income_months_back": months_back},
                correlation_id,
            )

        return await self._recalculate(budget_id, now, None, correlation_id)

    # =========================================================================
    # Months
    # =========================================================================

    async def open_month(
        self,
        budget_id: str,
        year: int,
        month: int,
        now: YearMonth,
        correlation_id: Optional[UUID] = None,
    ) -> MonthDocument:
        """
        Navigate to a month, creating it if the creation rules allow.

        Raises:
            MonthNavigationError: If the month may not be created
        """
        correlation_id = correlation_id or create_correlation_id()
        budget = await self._require_budget(budget_id, correlation_id)

        if month_ordinal(year, month) in budget.month_map:
            return await self._existing_month(budget, year, month, correlation_id)

        self._ensure_not_blocked(budget_id)
        document = await self._month_for_edit(budget, year, month, now, correlation_id)
        await self._save_month(document)
        await self._register_months(budget, year, month, now)
        await self._recalculate(budget_id, now, (year, month), correlation_id)
        return self._cache.peek_month_document(budget_id, year, month) or document

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_not_blocked(self, budget_id: str) -> None:
        if self._cache.is_blocked(budget_id):
            raise RecalculationBlockedError(
                budget_id, self._cache.status(budget_id).error_message
            )

    async def _require_budget(self, budget_id: str, correlation_id: UUID) -> Budget:
        budget = await self._cache.get_budget(budget_id, correlation_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    async def _validate(
        self,
        budget: Budget,
        transaction: Transaction,
        correlation_id: UUID,
    ) -> None:
        validator = TransactionValidator(budget)
        result = validator.validate(transaction)
        if not result.is_valid and self._audit_logger:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in result.issues
            ]
            await self._audit_logger.log_validation_rejected(
                budget.id, transaction.kind, issues, correlation_id
            )
        validator.ensure_valid(transaction)

    async def _existing_month(
        self,
        budget: Budget,
        year: int,
        month: int,
        correlation_id: UUID,
    ) -> MonthDocument:
        if month_ordinal(year, month) not in budget.month_map:
            raise NotFoundError(f"Month {month_ordinal(year, month)} does not exist")
        document = await self._cache.get_month_document(budget.id, year, month, correlation_id)
        return document or MonthDocument(budget_id=budget.id, year=year, month=month)

    async def _month_for_edit(
        self,
        budget: Budget,
        year: int,
        month: int,
        now: YearMonth,
        correlation_id: UUID,
    ) -> MonthDocument:
        """The month's document, creating it when the rules allow."""
        if month_ordinal(year, month) in budget.month_map:
            return await self._existing_month(budget, year, month, correlation_id)

        ensure_can_create_month(
            budget,
            year,
            month,
            now,
            past_months=self._settings.past_window_months,
            future_months=self._settings.future_window_months,
        )
        if self._audit_logger:
            await self._audit_logger.log_month_created(
                budget.id, month_ordinal(year, month), correlation_id
            )
        return MonthDocument(budget_id=budget.id, year=year, month=month)

    async def _save_month(self, document: MonthDocument) -> None:
        await self._storage.save_month(document)
        self._cache.record_month_edit(document)

    async def _register_months(
        self,
        budget: Budget,
        year: int,
        month: int,
        now: YearMonth,
    ) -> None:
        """Add the edited month and later window months to month_map."""
        window = PersistenceWindow.from_settings(now, self._settings)
        current = self._cache.peek_budget(budget.id) or budget
        month_map = current.month_map | set(window.months_to_register(year, month))
        if month_map == current.month_map:
            return

        await self._storage.write_budget_field(budget.id, month_map=month_map)
        self._cache.record_budget_edit(current.model_copy(update={"month_map": month_map}))

    async def _draft_allocations(
        self,
        budget: Budget,
        year: int,
        month: int,
        correlation_id: UUID,
    ) -> dict[str, Decimal]:
        """The draft allocations currently displayed for a month."""
        recalculated = self._cache.get_recalculated_month(budget.id, year, month)
        if recalculated is not None and not recalculated.are_allocations_finalized:
            return {b.category_id: b.allocated for b in recalculated.category_balances}

        months_back = effective_months_back(
            budget, self._settings.default_percentage_income_months_back
        )
        source = shift_month(year, month, -months_back)
        income = ZERO
        if month_ordinal(*source) in budget.month_map:
            document = await self._cache.get_month_document(budget.id, *source, correlation_id)
            if document is not None:
                income = sum_currency(i.amount for i in document.income)
        return resolve_draft_allocations(budget.categories, income)

    async def _recalculate(
        self,
        budget_id: str,
        now: YearMonth,
        from_month: Optional[YearMonth],
        correlation_id: UUID,
    ) -> RecalculationResult:
        return await self._recalculation.recalculate(
            budget_id,
            now,
            RecalculationTrigger.MUTATION,
            from_month=from_month,
            correlation_id=correlation_id,
        )


def create_engine_components(
    use_storage: bool = True,
) -> tuple[RecalculationFlow, LedgerMutationFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all engine components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on in-memory storage.

    Returns:
        (recalculation_flow, mutation_flow, sheets_client)
    """
    sheets_client = None
    budget_storage: BudgetStorageInterface
    audit_storage: AuditStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            budget_storage = GoogleSheetsBudgetStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            budget_storage = InMemoryBudgetStorage()
            audit_storage = InMemoryAuditStorage()
    else:
        budget_storage = InMemoryBudgetStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)

    recalculation_flow = RecalculationFlow(
        storage=budget_storage,
        audit_logger=audit_logger,
    )
    mutation_flow = LedgerMutationFlow(
        recalculation=recalculation_flow,
        storage=budget_storage,
        audit_logger=audit_logger,
    )

    return recalculation_flow, mutation_flow, sheets_client
