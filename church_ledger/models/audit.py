"""
Audit Models for Church Fund Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every change to a fund balance
2. Debugging information when things go wrong
3. Accountability towards the church committee

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Money movements are additionally recorded as ledger entries; audit events
describe the user action around them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of a submission has its own event type.
    """
    # Funds
    FUND_CREATED = "fund_created"
    FUND_UPDATED = "fund_updated"
    FUND_DELETED = "fund_deleted"
    TRANSFER_COMPLETED = "transfer_completed"

    # Records
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    REPAYMENT_RECORDED = "repayment_recorded"
    MEMBER_SAVED = "member_saved"
    BILL_GROUP_SAVED = "bill_group_saved"
    BILL_GROUP_DELETED = "bill_group_deleted"

    # Validation
    SCHEMA_VALIDATION_FAILED = "schema_validation_failed"
    SEMANTIC_VALIDATION_FAILED = "semantic_validation_failed"
    DUPLICATE_SUBMISSION_REJECTED = "duplicate_submission_rejected"

    # Reconciliation
    BALANCES_RECONCILED = "balances_reconciled"
    COMMIT_CONFLICT_RETRIED = "commit_conflict_retried"
    SAVE_FAILED = "save_failed"

    # Reports
    REPORT_GENERATED = "report_generated"
    BALANCE_AUDIT_FAILED = "balance_audit_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'offering', 'fund', 'transfer')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one submission)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
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
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


def _money(amount: Decimal) -> str:
    return f"{amount:.2f}"


def _deltas(deltas: dict[UUID, Decimal]) -> dict[str, str]:
    return {str(fund_id): _money(delta) for fund_id, delta in deltas.items()}


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created("offering", offering_id, amount, correlation_id)
        event = AuditEventBuilder.transfer_completed(transfer, correlation_id)
    """

    @staticmethod
    def fund_created(
        fund_id: UUID,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FUND_CREATED,
            entity_type="fund",
            entity_id=fund_id,
            correlation_id=correlation_id,
            description=f"Fund created: {name}",
            details={
                "name": name,
                "opening_balance": _money(opening_balance),
            },
            is_user_action=True,
        )

    @staticmethod
    def fund_updated(
        fund_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FUND_UPDATED,
            entity_type="fund",
            entity_id=fund_id,
            correlation_id=correlation_id,
            description=f"Fund updated: {', '.join(sorted(changes))}",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def fund_deleted(
        fund_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FUND_DELETED,
            entity_type="fund",
            entity_id=fund_id,
            correlation_id=correlation_id,
            description=f"Fund deleted: {name}",
            is_user_action=True,
        )

    @staticmethod
    def transfer_completed(
        transfer_id: UUID,
        from_fund_id: UUID,
        to_fund_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_COMPLETED,
            entity_type="transfer",
            entity_id=transfer_id,
            correlation_id=correlation_id,
            description=f"Transferred {_money(amount)} between funds",
            details={
                "from_fund_id": str(from_fund_id),
                "to_fund_id": str(to_fund_id),
                "amount": _money(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def record_created(
        entity_type: str,
        record_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            entity_type=entity_type,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} recorded: {_money(amount)}",
            details={"amount": _money(amount)},
            is_user_action=True,
        )

    @staticmethod
    def record_updated(
        entity_type: str,
        record_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type=entity_type,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} updated",
            details={
                "old_amount": _money(old_amount),
                "new_amount": _money(new_amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(
        entity_type: str,
        record_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            entity_type=entity_type,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} deleted: {_money(amount)}",
            details={"amount": _money(amount)},
            is_user_action=True,
        )

    @staticmethod
    def repayment_recorded(
        advance_id: UUID,
        amount: Decimal,
        outstanding: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPAYMENT_RECORDED,
            entity_type="advance",
            entity_id=advance_id,
            correlation_id=correlation_id,
            description=f"Advance repayment recorded: {_money(amount)}",
            details={
                "amount": _money(amount),
                "outstanding": _money(outstanding),
            },
            is_user_action=True,
        )

    @staticmethod
    def member_saved(
        member_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_SAVED,
            entity_type="member",
            entity_id=member_id,
            correlation_id=correlation_id,
            description=f"Member saved: {name}",
            is_user_action=True,
        )

    @staticmethod
    def bill_group_saved(
        entity_type: str,
        group_id: UUID,
        title: str,
        changes: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        """entity_type is "bill_group" or "bill_subgroup"."""
        return AuditEvent(
            event_type=AuditEventType.BILL_GROUP_SAVED,
            entity_type=entity_type,
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} saved: {title}",
            details={"changes": changes} if changes else {},
            is_user_action=True,
        )

    @staticmethod
    def bill_group_deleted(
        entity_type: str,
        group_id: UUID,
        title: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_GROUP_DELETED,
            entity_type=entity_type,
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} deleted: {title}",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        subject: str,
        stage: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        event_type = (
            AuditEventType.SCHEMA_VALIDATION_FAILED
            if stage == "schema"
            else AuditEventType.SEMANTIC_VALIDATION_FAILED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type=subject,
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={
                "stage": stage,
                "issues": issues,
            },
        )

    @staticmethod
    def duplicate_submission_rejected(
        submission_key: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SUBMISSION_REJECTED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="Duplicate submission rejected while the first is in flight",
            details={"submission_key": submission_key},
            is_user_action=True,
        )

    @staticmethod
    def balances_reconciled(
        deltas: dict[UUID, Decimal],
        commit_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_RECONCILED,
            entity_type="commit",
            entity_id=commit_id,
            correlation_id=correlation_id,
            description=f"Fund balances reconciled: {len(deltas)} funds changed",
            details={"deltas": _deltas(deltas)},
        )

    @staticmethod
    def commit_conflict_retried(
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_CONFLICT_RETRIED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Fund version conflict on attempt {attempt}, retrying",
            error_message=error_message,
            details={"attempt": attempt},
        )

    @staticmethod
    def save_failed(
        entity_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"Failed to save {entity_type}",
            error_message=error_message,
        )

    @staticmethod
    def report_generated(
        report_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPORT_GENERATED,
            entity_type="report",
            correlation_id=correlation_id,
            description=f"Report generated: {report_type} with {result_count} rows",
            details={
                "report_type": report_type,
                "result_count": result_count,
            },
        )

    @staticmethod
    def balance_audit_failed(
        discrepancies: dict[UUID, Decimal],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_AUDIT_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="fund",
            correlation_id=correlation_id,
            description=f"Balance audit found {len(discrepancies)} discrepancies",
            details={"discrepancies": _deltas(discrepancies)},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
