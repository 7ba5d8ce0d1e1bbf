"""
Audit Logger

DESIGN DECISION: Every recalculation pass and ledger mutation is logged.
This provides:
1. Traceability of which pass wrote which anchor
2. Visibility into conditions the engine recovers from on its own
   (missing anchors, cache misses, precision drift)
3. A per-budget edit history

The audit logger:
- Is async so it composes with the recalculation flow
- Gracefully handles failures (a failed audit write never fails a pass)
- Supports correlation IDs to trace all events of one pass or mutation
"""

import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from budget_engine.config import AppSettings, get_settings
from budget_engine.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from budget_engine.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """Configure structlog on top of the stdlib logging backend."""
    settings = settings or get_settings().app
    level = "DEBUG" if settings.debug_mode else settings.log_level

    logging.basicConfig(format="%(message)s", level=getattr(logging, level))

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json and not settings.debug_mode
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("budget_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_recalculation_started(
        self,
        budget_id: str,
        trigger: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recalculation_started(budget_id, trigger, correlation_id))

    async def log_recalculation_completed(
        self,
        budget_id: str,
        months_recalculated: int,
        writes: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recalculation_completed(
            budget_id, months_recalculated, writes, correlation_id
        ))

    async def log_recalculation_skipped(
        self,
        budget_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recalculation_skipped(budget_id, reason, correlation_id))

    async def log_recalculation_discarded(
        self,
        budget_id: str,
        active_budget_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a pass whose results were dropped because the budget changed."""
        await self.log(AuditEventBuilder.recalculation_discarded(
            budget_id, active_budget_id, correlation_id
        ))

    async def log_recalculation_failed(
        self,
        budget_id: str,
        error_messages: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recalculation_failed(
            budget_id, error_messages, correlation_id
        ))

    async def log_anchor_found(
        self,
        budget_id: str,
        ordinal: str,
        months_walked_back: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.anchor_found(
            budget_id, ordinal, months_walked_back, correlation_id
        ))

    async def log_anchor_missing(
        self,
        budget_id: str,
        start_ordinal: Optional[str],
        source: str,
        correlation_id: UUID,
    ) -> None:
        """Log the MissingAnchor warning: the chain starts from zero."""
        await self.log(AuditEventBuilder.anchor_missing(
            budget_id, start_ordinal, source, correlation_id
        ))

    async def log_start_balances_persisted(
        self,
        budget_id: str,
        ordinal: str,
        accounts: int,
        categories: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.start_balances_persisted(
            budget_id, ordinal, accounts, categories, correlation_id
        ))

    async def log_cache_miss(
        self,
        budget_id: str,
        ordinal: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cache_miss(budget_id, ordinal, correlation_id))

    async def log_precision_drift(
        self,
        budget_id: str,
        ordinal: str,
        field: str,
        raw_value: Decimal,
        rounded_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.precision_drift_corrected(
            budget_id, ordinal, field, str(raw_value), str(rounded_value), correlation_id
        ))

    async def log_transaction_changed(
        self,
        event_type: AuditEventType,
        budget_id: str,
        ordinal: str,
        transaction_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_changed(
            event_type, budget_id, ordinal, transaction_id, kind, correlation_id
        ))

    async def log_validation_rejected(
        self,
        budget_id: str,
        kind: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.validation_rejected(budget_id, kind, issues, correlation_id))

    async def log_allocations_finalized(
        self,
        budget_id: str,
        ordinal: str,
        total_allocated: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.allocations_finalized(
            budget_id, ordinal, str(total_allocated), correlation_id
        ))

    async def log_budget_settings_updated(
        self,
        budget_id: str,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.budget_settings_updated(budget_id, changes, correlation_id))

    async def log_month_created(
        self,
        budget_id: str,
        ordinal: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.month_created(budget_id, ordinal, correlation_id))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(operation, error_message, correlation_id))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a recalculation pass or a mutation.
    Pass it through all subsequent operations.
    """
    return uuid4()
