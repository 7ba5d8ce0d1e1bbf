"""
Audit Models for Budget Engine

Every recalculation pass and every ledger mutation is logged for audit
purposes. This provides:
1. Traceability of which pass wrote which anchor
2. Visibility into recovered conditions (missing anchors, cache misses, drift)
3. A history of edits per budget

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Recalculation passes
    RECALCULATION_STARTED = "recalculation_started"
    RECALCULATION_COMPLETED = "recalculation_completed"
    RECALCULATION_SKIPPED = "recalculation_skipped"
    RECALCULATION_DISCARDED = "recalculation_discarded"
    RECALCULATION_FAILED = "recalculation_failed"

    # Chain walk
    ANCHOR_FOUND = "anchor_found"
    ANCHOR_MISSING = "anchor_missing"
    START_BALANCES_PERSISTED = "start_balances_persisted"
    CACHE_MISS = "cache_miss"
    PRECISION_DRIFT_CORRECTED = "precision_drift_corrected"

    # Ledger mutations
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    VALIDATION_REJECTED = "validation_rejected"
    ALLOCATIONS_FINALIZED = "allocations_finalized"
    BUDGET_SETTINGS_UPDATED = "budget_settings_updated"
    MONTH_CREATED = "month_created"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'month', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - ties together all events of one pass or mutation
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.recalculation_started(budget_id, "initial_load", cid)
        event = AuditEventBuilder.anchor_missing(budget_id, "202301", "walk_limit", cid)
    """

    @staticmethod
    def recalculation_started(
        budget_id: str,
        trigger: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_STARTED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Recalculation started ({trigger})",
            details={"trigger": trigger},
        )

    @staticmethod
    def recalculation_completed(
        budget_id: str,
        months_recalculated: int,
        writes: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_COMPLETED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Recalculated {months_recalculated} month(s), {writes} anchor write(s)",
            details={
                "months_recalculated": months_recalculated,
                "writes": writes,
            },
        )

    @staticmethod
    def recalculation_skipped(
        budget_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Recalculation skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def recalculation_discarded(
        budget_id: str,
        active_budget_id: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_DISCARDED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Stale recalculation discarded before commit",
            details={"active_budget_id": active_budget_id},
        )

    @staticmethod
    def recalculation_failed(
        budget_id: str,
        error_messages: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Recalculation failed with {len(error_messages)} error(s)",
            details={"errors": error_messages},
            error_code="RECALCULATION_FAILED",
            error_message=error_messages[0] if error_messages else None,
        )

    @staticmethod
    def anchor_found(
        budget_id: str,
        ordinal: str,
        months_walked_back: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANCHOR_FOUND,
            severity=AuditSeverity.DEBUG,
            entity_type="month",
            entity_id=f"{budget_id}_{ordinal}",
            correlation_id=correlation_id,
            description=f"Anchor month {ordinal}",
            details={"months_walked_back": months_walked_back},
        )

    @staticmethod
    def anchor_missing(
        budget_id: str,
        start_ordinal: Optional[str],
        source: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANCHOR_MISSING,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="No persisted start balance found; starting from zero",
            details={
                "start_ordinal": start_ordinal,
                "source": source,
            },
            error_code="MISSING_ANCHOR",
        )

    @staticmethod
    def start_balances_persisted(
        budget_id: str,
        ordinal: str,
        accounts: int,
        categories: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.START_BALANCES_PERSISTED,
            entity_type="month",
            entity_id=f"{budget_id}_{ordinal}",
            correlation_id=correlation_id,
            description=f"Persisted start balances for {ordinal}",
            details={
                "accounts": accounts,
                "categories": categories,
            },
        )

    @staticmethod
    def cache_miss(
        budget_id: str,
        ordinal: Optional[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        target = f"month {ordinal}" if ordinal else "budget"
        return AuditEvent(
            event_type=AuditEventType.CACHE_MISS,
            severity=AuditSeverity.DEBUG,
            entity_type="month" if ordinal else "budget",
            entity_id=f"{budget_id}_{ordinal}" if ordinal else budget_id,
            correlation_id=correlation_id,
            description=f"Cache miss for {target}; fetching from storage",
        )

    @staticmethod
    def precision_drift_corrected(
        budget_id: str,
        ordinal: str,
        field: str,
        raw_value: str,
        rounded_value: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRECISION_DRIFT_CORRECTED,
            severity=AuditSeverity.WARNING,
            entity_type="month",
            entity_id=f"{budget_id}_{ordinal}",
            correlation_id=correlation_id,
            description=f"Rounded drifting value in {field}",
            details={
                "field": field,
                "raw_value": raw_value,
                "rounded_value": rounded_value,
            },
            error_code="PRECISION_DRIFT",
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        budget_id: str,
        ordinal: str,
        transaction_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        action = event_type.value.replace("transaction_", "")
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} {action} in {ordinal}",
            details={
                "budget_id": budget_id,
                "ordinal": ordinal,
                "kind": kind,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_rejected(
        budget_id: str,
        kind: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} rejected by validation",
            details={"kind": kind, "issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def allocations_finalized(
        budget_id: str,
        ordinal: str,
        total_allocated: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATIONS_FINALIZED,
            entity_type="month",
            entity_id=f"{budget_id}_{ordinal}",
            correlation_id=correlation_id,
            description=f"Allocations finalized for {ordinal}",
            details={"total_allocated": total_allocated},
            is_user_action=True,
        )

    @staticmethod
    def budget_settings_updated(
        budget_id: str,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SETTINGS_UPDATED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget settings updated: {', '.join(sorted(changes))}",
            details=changes,
            is_user_action=True,
        )

    @staticmethod
    def month_created(
        budget_id: str,
        ordinal: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_CREATED,
            entity_type="month",
            entity_id=f"{budget_id}_{ordinal}",
            correlation_id=correlation_id,
            description=f"Month {ordinal} created",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="system",
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="storage",
            correlation_id=correlation_id,
            description=f"Storage operation failed: {operation}",
            details={"operation": operation},
            error_code="STORAGE_ERROR",
            error_message=error_message,
        )
