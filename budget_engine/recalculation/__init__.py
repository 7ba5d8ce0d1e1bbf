"""
Recalculation Package

The read-through cache with its per-budget state machine, and the chain
walker that re-derives months from the nearest anchor.
"""

from budget_engine.recalculation.cache import (
    BudgetCache,
    RecalculationState,
    RecalculationStatus,
)
from budget_engine.recalculation.walker import (
    AnchorSource,
    ChainAnchor,
    ChainWalker,
    ChainWalkResult,
    PendingStartBalanceWrite,
    ProgressCallback,
    RecalculationError,
    RecalculationPhase,
    RecalculationProgress,
    report_progress,
)

__all__ = [
    # Cache
    "BudgetCache",
    "RecalculationState",
    "RecalculationStatus",
    # Walker
    "AnchorSource",
    "ChainAnchor",
    "ChainWalker",
    "ChainWalkResult",
    "PendingStartBalanceWrite",
    "ProgressCallback",
    "RecalculationError",
    "RecalculationPhase",
    "RecalculationProgress",
    "report_progress",
]
