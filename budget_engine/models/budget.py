"""
Budget Models for Budget Engine

A Budget owns its accounts, categories, their groups, and the month map.
Transactions and balance snapshots reference accounts/categories by id only.

DESIGN DECISION: The month map is a set of YYYYMM ordinals. It bounds the
backward and forward walks without needing a date-range query against
storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DefaultAllocationType(str, Enum):
    """How a category's draft allocation is derived."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"  # of income N months back


class AccountGroup(BaseModel):
    """
    A grouping of accounts.

    on_budget / is_active override the member accounts' own flags when set.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = 0
    on_budget: Optional[bool] = None
    is_active: Optional[bool] = None


class Account(BaseModel):
    """A real-money account (checking, savings, card, cash)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    nickname: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    account_group_id: Optional[str] = None
    sort_order: int = 0
    on_budget: bool = True
    is_active: bool = True
    opening_balance: Decimal = Field(
        default=Decimal("0.00"),
        description="Start balance in the budget's very first month"
    )
    balance: Decimal = Field(
        default=Decimal("0.00"),
        description="Current balance, computed by the engine"
    )


class CategoryGroup(BaseModel):
    """A grouping of categories for display."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = 0


class Category(BaseModel):
    """A spending category with its default allocation rule."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category_group_id: Optional[str] = None
    sort_order: int = 0
    default_monthly_amount: Optional[Decimal] = Field(
        default=None,
        description="Fixed amount, or a percentage when the type is percentage"
    )
    default_monthly_type: DefaultAllocationType = DefaultAllocationType.FIXED
    opening_balance: Decimal = Field(
        default=Decimal("0.00"),
        description="Start balance in the budget's very first month"
    )
    balance: Decimal = Field(
        default=Decimal("0.00"),
        description="All-time available balance, computed by the engine"
    )

    @field_validator("default_monthly_amount")
    @classmethod
    def validate_default_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("Default monthly amount cannot be negative")
        return v


class Budget(BaseModel):
    """
    The budget aggregate.

    accounts/categories are keyed by id.
    """

    id: str = Field(..., min_length=1)
    name: str = Field(default="My Budget", min_length=1, max_length=200)

    accounts: dict[str, Account] = Field(default_factory=dict)
    account_groups: dict[str, AccountGroup] = Field(default_factory=dict)
    categories: dict[str, Category] = Field(default_factory=dict)
    category_groups: dict[str, CategoryGroup] = Field(default_factory=dict)

    month_map: set[str] = Field(
        default_factory=set,
        description="YYYYMM ordinals of every month that exists"
    )
    percentage_income_months_back: Optional[int] = Field(
        default=None,
        ge=1,
        le=12,
        description="Income lookback for percentage allocations (engine default when unset)"
    )

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("month_map")
    @classmethod
    def validate_month_map(cls, v: set[str]) -> set[str]:
        for ordinal in v:
            if len(ordinal) != 6 or not ordinal.isdigit() or not 1 <= int(ordinal[4:]) <= 12:
                raise ValueError(f"Invalid month ordinal: {ordinal!r} (expected YYYYMM)")
        return v

    @property
    def sorted_ordinals(self) -> list[str]:
        return sorted(self.month_map)

    @property
    def earliest_ordinal(self) -> Optional[str]:
        return min(self.month_map) if self.month_map else None

    @property
    def latest_ordinal(self) -> Optional[str]:
        return max(self.month_map) if self.month_map else None

    def account_counts_toward_budget(self, account_id: str) -> bool:
        """On-budget and active, with group flags taking precedence."""
        account = self.accounts.get(account_id)
        if account is None:
            return False

        on_budget = account.on_budget
        is_active = account.is_active
        group = self.account_groups.get(account.account_group_id) if account.account_group_id else None
        if group is not None:
            if group.on_budget is not None:
                on_budget = group.on_budget
            if group.is_active is not None:
                is_active = group.is_active

        return on_budget and is_active
