"""Tests for the recalculation and ledger mutation flows."""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from budget_engine.calculations.calendar import MonthNavigationError
from budget_engine.models.audit import AuditEventType
from budget_engine.models.budget import Category, DefaultAllocationType
from budget_engine.models.ledger import NO_CATEGORY_ID, Expense, Income, Transfer
from budget_engine.orchestrator import (
    LedgerMutationFlow,
    RecalculationBlockedError,
    RecalculationFlow,
    RecalculationOutcome,
    RecalculationTrigger,
    create_engine_components,
)
from budget_engine.recalculation import (
    AnchorSource,
    RecalculationError,
    RecalculationPhase,
    RecalculationState,
)
from budget_engine.services.storage import InMemoryBudgetStorage, NotFoundError
from budget_engine.validation import InvalidTransferError


@pytest.fixture
def flow(seeded_storage, audit_logger, engine_settings):
    return RecalculationFlow(seeded_storage, audit_logger=audit_logger, settings=engine_settings)


@pytest.fixture
def mutations(flow, seeded_storage, audit_logger):
    return LedgerMutationFlow(flow, seeded_storage, audit_logger)


def events_of(audit_storage, event_type):
    return [e for e in audit_storage.events if e.event_type == event_type]


def grocery_run(day, amount, transaction_id=None):
    kwargs = {"id": transaction_id} if transaction_id else {}
    return Expense(
        date=day,
        amount=Decimal(amount),
        account_id="checking",
        category_id="groceries",
        **kwargs,
    )


class SlowBudgetStorage(InMemoryBudgetStorage):
    """Yields to the event loop before every month read, like a network round trip."""

    async def read_month(self, budget_id, year, month):
        await asyncio.sleep(0)
        return await super().read_month(budget_id, year, month)


class TestRecalculationFlow:
    """Tests for RecalculationFlow."""

    @pytest.mark.asyncio
    async def test_initial_load(self, flow, seeded_storage, now):
        """Test the first pass of a budget with no anchors."""
        result = await flow.load_budget("b1", now)

        assert result.outcome == RecalculationOutcome.COMPLETED
        assert result.trigger == RecalculationTrigger.INITIAL_LOAD
        assert result.anchor_source == AnchorSource.EARLIEST_MONTH
        assert result.writes == 3
        assert result.account_balances == {"checking": Decimal("5400.00")}
        assert result.category_balances == {"groceries": Decimal("-600.00")}
        assert result.ready_to_assign == Decimal("5400.00")

        budget = flow.cache.peek_budget("b1")
        assert budget.accounts["checking"].balance == Decimal("5400.00")
        assert budget.categories["groceries"].balance == Decimal("-600.00")

        march = flow.cache.get_recalculated_month("b1", 2024, 3)
        assert march.account_balance("checking").start_balance == Decimal("1800.00")
        assert flow.cache.status("b1").state == RecalculationState.DONE

    @pytest.mark.asyncio
    async def test_progress_phases(self, flow, now):
        """Test the progress reported over a pass."""
        reports = []
        await flow.load_budget("b1", now, on_progress=reports.append)

        phases = [r.phase for r in reports]
        assert phases[0] == RecalculationPhase.READING_BUDGET
        assert RecalculationPhase.FETCHING_MONTHS in phases
        assert RecalculationPhase.SAVING in phases
        assert phases[-1] == RecalculationPhase.COMPLETE
        assert reports[-1].percent == 100

    @pytest.mark.asyncio
    async def test_second_initial_load_is_skipped(self, flow, seeded_storage, audit_storage, now):
        """Test that a budget is walked at most once per session."""
        first = await flow.load_budget("b1", now)
        seeded_storage.clear_log()

        second = await flow.load_budget("b1", now)

        assert second.outcome == RecalculationOutcome.SKIPPED
        assert second.account_balances == first.account_balances
        assert seeded_storage.reads == []
        assert len(events_of(audit_storage, AuditEventType.RECALCULATION_SKIPPED)) == 1

    @pytest.mark.asyncio
    async def test_recalculate_all_uses_written_anchors(self, flow, seeded_storage, now):
        """Test that a full refresh after a pass writes nothing new."""
        first = await flow.load_budget("b1", now)
        seeded_storage.clear_log()

        refreshed = await flow.recalculate_all("b1", now)

        assert refreshed.outcome == RecalculationOutcome.COMPLETED
        assert refreshed.anchor_ordinal == "202403"
        assert refreshed.anchor_source == AnchorSource.PERSISTED
        assert refreshed.writes == 0
        assert seeded_storage.write_count == 0
        assert refreshed.account_balances == first.account_balances
        assert refreshed.category_balances == first.category_balances

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_pass(self, flow, audit_storage, now):
        """Test that simultaneous initial loads run a single pass."""
        first, second = await asyncio.gather(
            flow.load_budget("b1", now),
            flow.load_budget("b1", now),
        )

        assert first.correlation_id == second.correlation_id
        assert len(events_of(audit_storage, AuditEventType.RECALCULATION_STARTED)) == 1

    @pytest.mark.asyncio
    async def test_budget_switch_discards_pass(self, flow, seeded_storage, audit_storage, now):
        """Test that a pass whose budget was switched away never commits."""
        def switch_budget(progress):
            if progress.phase == RecalculationPhase.RECALCULATING:
                flow.cache.select_budget("b2")

        result = await flow.load_budget("b1", now, on_progress=switch_budget)

        assert result.outcome == RecalculationOutcome.DISCARDED
        assert seeded_storage.write_count == 0
        assert flow.cache.get_recalculated_month("b1", 2024, 3) is None
        assert flow.cache.status("b1").state == RecalculationState.IDLE
        assert len(events_of(audit_storage, AuditEventType.RECALCULATION_DISCARDED)) == 1

    @pytest.mark.asyncio
    async def test_read_failure_fails_pass(self, flow, seeded_storage, now):
        """Test that a storage read error surfaces as one RecalculationError."""
        seeded_storage.fail_operations.add("read_month")

        with pytest.raises(RecalculationError) as exc_info:
            await flow.load_budget("b1", now)

        assert "injected" in exc_info.value.messages[0]
        assert flow.cache.is_blocked("b1") is True
        assert flow.cache.status("b1").banner is not None

    @pytest.mark.asyncio
    async def test_missing_budget(self, storage, engine_settings, now):
        """Test loading a budget that does not exist."""
        flow = RecalculationFlow(storage, settings=engine_settings)

        with pytest.raises(RecalculationError) as exc_info:
            await flow.load_budget("nope", now)

        assert isinstance(exc_info.value.errors[0], NotFoundError)

    @pytest.mark.asyncio
    async def test_error_after_walk_fails_pass(self, flow, monkeypatch, now):
        """Test that an unexpected error while committing leaves the budget FAILED, not RUNNING."""
        def broken(budget, category_balances):
            raise RuntimeError("totals unavailable")

        monkeypatch.setattr("budget_engine.orchestrator.calculate_ready_to_assign", broken)

        with pytest.raises(RuntimeError, match="totals unavailable"):
            await flow.load_budget("b1", now)

        status = flow.cache.status("b1")
        assert status.state == RecalculationState.FAILED
        assert status.task is None
        assert flow.cache.is_blocked("b1") is True

        monkeypatch.undo()
        result = await flow.load_budget("b1", now)

        assert result.outcome == RecalculationOutcome.COMPLETED
        assert flow.cache.status("b1").state == RecalculationState.DONE

    @pytest.mark.asyncio
    async def test_failed_pass_blocks_edits_until_retry(
        self, flow, mutations, seeded_storage, audit_storage, now
    ):
        """Test the failure banner, the edit block and recovery on retry."""
        await flow.load_budget("b1", now)
        seeded_storage.fail_operations.add("write_partial_month")

        with pytest.raises(RecalculationError):
            await mutations.add_transaction("b1", grocery_run(date(2024, 2, 20), "-50.00"), now)

        assert flow.cache.is_blocked("b1") is True
        assert len(events_of(audit_storage, AuditEventType.RECALCULATION_FAILED)) == 1
        # The last good pass stays visible
        march = flow.cache.get_recalculated_month("b1", 2024, 3)
        assert march.account_balance("checking").start_balance == Decimal("1800.00")

        flow.dismiss_error("b1")
        assert flow.cache.status("b1").banner is None
        with pytest.raises(RecalculationBlockedError):
            await mutations.add_transaction("b1", grocery_run(date(2024, 5, 2), "-5.00"), now)

        seeded_storage.fail_operations.clear()
        retried = await flow.recalculate_all("b1", now)

        assert flow.cache.is_blocked("b1") is False
        assert retried.anchor_ordinal == "202402"
        assert retried.account_balances == {"checking": Decimal("5350.00")}
        march = flow.cache.get_recalculated_month("b1", 2024, 3)
        assert march.account_balance("checking").start_balance == Decimal("1750.00")
        assert march.category_balance("groceries").start_balance == Decimal("-250.00")


class TestLedgerMutationFlow:
    """Tests for LedgerMutationFlow."""

    @pytest.mark.asyncio
    async def test_add_transaction_recalculates(self, flow, mutations, seeded_storage, now):
        """Test adding an expense and registering later window months."""
        await flow.load_budget("b1", now)

        result = await mutations.add_transaction(
            "b1", grocery_run(date(2024, 5, 10), "-25.00"), now
        )

        assert result.trigger == RecalculationTrigger.MUTATION
        assert result.months_recalculated == [
            "202403", "202404", "202405", "202406", "202407", "202408", "202409",
        ]
        assert result.account_balances == {"checking": Decimal("5375.00")}
        assert result.category_balances == {"groceries": Decimal("-625.00")}

        stored = await seeded_storage.read_budget("b1")
        assert {"202407", "202408", "202409"} <= stored.month_map
        may = await seeded_storage.read_month("b1", 2024, 5)
        assert len(may.expenses) == 2

    @pytest.mark.asyncio
    async def test_edit_during_running_load_is_kept(
        self, household_budget, household_months, audit_logger, engine_settings, now
    ):
        """Test that a load which read a month before it was edited cannot commit over the edit."""
        storage = SlowBudgetStorage()
        storage.seed(household_budget, household_months)
        flow = RecalculationFlow(storage, audit_logger=audit_logger, settings=engine_settings)
        mutations = LedgerMutationFlow(flow, storage, audit_logger)

        load = asyncio.ensure_future(flow.load_budget("b1", now))
        while ("read_month", "b1_202405") not in storage.reads:
            await asyncio.sleep(0)

        result = await mutations.add_transaction(
            "b1",
            Income(date=date(2024, 5, 20), amount=Decimal("100.00"), account_id="checking"),
            now,
        )
        loaded = await load

        assert loaded.outcome == RecalculationOutcome.DISCARDED
        assert result.outcome == RecalculationOutcome.COMPLETED
        assert result.months_recalculated[-1] == "202409"
        assert result.account_balances == {"checking": Decimal("5500.00")}

        budget = flow.cache.peek_budget("b1")
        assert budget.accounts["checking"].balance == Decimal("5500.00")
        assert {"202407", "202408", "202409"} <= budget.month_map
        may = flow.cache.peek_month_document("b1", 2024, 5)
        assert len(may.income) == 2
        assert flow.cache.status("b1").state == RecalculationState.DONE

    @pytest.mark.asyncio
    async def test_invalid_transfer_is_rejected(
        self, flow, mutations, seeded_storage, audit_storage, now
    ):
        """Test that a category mismatch is refused before anything is written."""
        await flow.load_budget("b1", now)
        seeded_storage.clear_log()
        transfer = Transfer(
            date=date(2024, 6, 3),
            amount=Decimal("50.00"),
            from_account_id="checking",
            to_account_id="savings",
            from_category_id="groceries",
            to_category_id=NO_CATEGORY_ID,
        )

        with pytest.raises(InvalidTransferError):
            await mutations.add_transaction("b1", transfer, now)

        assert seeded_storage.writes == []
        assert len(events_of(audit_storage, AuditEventType.VALIDATION_REJECTED)) == 1

    @pytest.mark.asyncio
    async def test_delete_transaction(self, flow, mutations, now):
        """Test removing an expense."""
        await flow.load_budget("b1", now)

        result = await mutations.delete_transaction("b1", 2024, 5, "food-5", now)

        assert result.account_balances == {"checking": Decimal("5500.00")}
        with pytest.raises(NotFoundError):
            await mutations.delete_transaction("b1", 2024, 5, "food-5", now)

    @pytest.mark.asyncio
    async def test_update_in_place(self, flow, mutations, now):
        """Test changing an amount within the same month."""
        await flow.load_budget("b1", now)

        result = await mutations.update_transaction(
            "b1", grocery_run(date(2024, 4, 15), "-60.00", "food-4"), now
        )

        assert result.account_balances == {"checking": Decimal("5440.00")}

    @pytest.mark.asyncio
    async def test_update_moves_between_months(self, flow, mutations, seeded_storage, now):
        """Test that a re-dated transaction leaves its old month."""
        await flow.load_budget("b1", now)

        result = await mutations.update_transaction(
            "b1",
            grocery_run(date(2024, 4, 20), "-100.00", "food-5"),
            now,
            original_month=(2024, 5),
        )

        may = await seeded_storage.read_month("b1", 2024, 5)
        april = await seeded_storage.read_month("b1", 2024, 4)
        assert may.expenses == []
        assert sorted(e.id for e in april.expenses) == ["food-4", "food-5"]
        assert result.account_balances == {"checking": Decimal("5400.00")}
        may_balance = flow.cache.get_recalculated_month("b1", 2024, 5).account_balance("checking")
        assert may_balance.start_balance == Decimal("3500.00")

    @pytest.mark.asyncio
    async def test_open_month(self, flow, mutations, seeded_storage, now):
        """Test navigating to the next month and to a gap."""
        await flow.load_budget("b1", now)

        july = await mutations.open_month("b1", 2024, 7, now)

        assert july.ordinal == "202407"
        stored = await seeded_storage.read_budget("b1")
        assert "202409" in stored.month_map
        recalculated = flow.cache.get_recalculated_month("b1", 2024, 7)
        assert recalculated.account_balance("checking").start_balance == Decimal("5400.00")

        with pytest.raises(MonthNavigationError):
            await mutations.open_month("b1", 2024, 11, now)

    @pytest.mark.asyncio
    async def test_finalize_freezes_allocations(
        self, storage, household_budget, household_months, audit_logger, engine_settings, now
    ):
        """Test that finalized amounts survive a change of the income lookback."""
        budget = household_budget.model_copy(update={"categories": {
            **household_budget.categories,
            "savings": Category(
                name="Savings",
                default_monthly_amount=Decimal("10"),
                default_monthly_type=DefaultAllocationType.PERCENTAGE,
            ),
        }})
        april = household_months[3]
        april = april.model_copy(update={
            "income": [april.income[0].model_copy(update={"amount": Decimal("2000.00")})],
        })
        storage.seed(budget, [april if m.month == 4 else m for m in household_months])
        flow = RecalculationFlow(storage, audit_logger=audit_logger, settings=engine_settings)
        mutations = LedgerMutationFlow(flow, storage, audit_logger)
        await flow.load_budget("b1", now)

        def savings(month):
            return flow.cache.get_recalculated_month("b1", 2024, month).category_balance("savings")

        assert savings(5).allocated == Decimal("200.00")
        assert savings(6).allocated == Decimal("100.00")

        await mutations.finalize_allocations("b1", 2024, 6, now)
        stored_june = await storage.read_month("b1", 2024, 6)
        assert stored_june.are_allocations_finalized is True

        await mutations.set_percentage_income_months_back("b1", 2, now)

        assert (await storage.read_budget("b1")).percentage_income_months_back == 2
        assert savings(5).allocated == Decimal("100.00")
        assert savings(6).allocated == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_months_back_out_of_range(self, flow, mutations, seeded_storage, now):
        """Test that the lookback is limited to 1-12 months."""
        await flow.load_budget("b1", now)
        seeded_storage.clear_log()

        with pytest.raises(ValueError):
            await mutations.set_percentage_income_months_back("b1", 13, now)

        assert seeded_storage.writes == []


class TestEngineComponents:
    """Tests for the component factory."""

    def test_in_memory_components(self):
        """Test wiring without a storage backend."""
        recalculation, mutations, client = create_engine_components(use_storage=False)

        assert client is None
        assert isinstance(recalculation, RecalculationFlow)
        assert isinstance(mutations, LedgerMutationFlow)
        assert isinstance(recalculation.cache._storage, InMemoryBudgetStorage)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
