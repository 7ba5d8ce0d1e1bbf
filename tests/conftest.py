"""Shared fixtures: in-memory storage seeded with a small household budget."""

import pytest
from datetime import date
from decimal import Decimal

from budget_engine.audit import AuditLogger
from budget_engine.config.settings import EngineSettings
from budget_engine.models.budget import Account, Budget, Category
from budget_engine.models.ledger import Expense, Income, MonthDocument
from budget_engine.services.storage import InMemoryAuditStorage, InMemoryBudgetStorage


# Every engine test runs "now" in June 2024: the window starts at March,
# the horizon is September.
NOW = (2024, 6)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine_settings():
    return EngineSettings(
        past_window_months=3,
        future_window_months=3,
        max_walk_back_months=120,
        default_percentage_income_months_back=1,
    )


@pytest.fixture
def storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def household_budget():
    """Checking account, groceries at a fixed 400, months Jan-Jun 2024."""
    return Budget(
        id="b1",
        name="Household",
        accounts={"checking": Account(nickname="Checking")},
        categories={
            "groceries": Category(name="Groceries", default_monthly_amount=Decimal("400")),
        },
        month_map={f"2024{m:02d}" for m in range(1, 7)},
    )


@pytest.fixture
def household_months():
    """Each month: 1000.00 paycheck, 100.00 of groceries, nothing anchored."""
    months = []
    for m in range(1, 7):
        document = MonthDocument(budget_id="b1", year=2024, month=m)
        document = document.with_transaction(Income(
            id=f"pay-{m}", date=date(2024, m, 1), amount=Decimal("1000.00"), account_id="checking",
        ))
        document = document.with_transaction(Expense(
            id=f"food-{m}",
            date=date(2024, m, 15),
            amount=Decimal("-100.00"),
            account_id="checking",
            category_id="groceries",
        ))
        months.append(document)
    return months


@pytest.fixture
def seeded_storage(storage, household_budget, household_months):
    storage.seed(household_budget, household_months)
    return storage
