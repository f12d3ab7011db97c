"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of who moved money where
2. Debugging capability
3. A history the treasurer can review

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from church_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from church_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
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
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
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
        self._logger = structlog.get_logger("church_ledger.audit")

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

    async def log_fund_created(
        self,
        fund_id: UUID,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fund_created(
            fund_id=fund_id,
            name=name,
            opening_balance=opening_balance,
            correlation_id=correlation_id,
        ))

    async def log_fund_updated(
        self,
        fund_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fund_updated(
            fund_id=fund_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_fund_deleted(
        self,
        fund_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fund_deleted(
            fund_id=fund_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_transfer_completed(
        self,
        transfer_id: UUID,
        from_fund_id: UUID,
        to_fund_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed inter-fund transfer."""
        await self.log(AuditEventBuilder.transfer_completed(
            transfer_id=transfer_id,
            from_fund_id=from_fund_id,
            to_fund_id=to_fund_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_record_created(
        self,
        entity_type: str,
        record_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_created(
            entity_type=entity_type,
            record_id=record_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_record_updated(
        self,
        entity_type: str,
        record_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_updated(
            entity_type=entity_type,
            record_id=record_id,
            old_amount=old_amount,
            new_amount=new_amount,
            correlation_id=correlation_id,
        ))

    async def log_record_deleted(
        self,
        entity_type: str,
        record_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_deleted(
            entity_type=entity_type,
            record_id=record_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_repayment_recorded(
        self,
        advance_id: UUID,
        amount: Decimal,
        outstanding: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.repayment_recorded(
            advance_id=advance_id,
            amount=amount,
            outstanding=outstanding,
            correlation_id=correlation_id,
        ))

    async def log_member_saved(
        self,
        member_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_saved(
            member_id=member_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_bill_group_saved(
        self,
        entity_type: str,
        group_id: UUID,
        title: str,
        changes: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bill_group_saved(
            entity_type=entity_type,
            group_id=group_id,
            title=title,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_bill_group_deleted(
        self,
        entity_type: str,
        group_id: UUID,
        title: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bill_group_deleted(
            entity_type=entity_type,
            group_id=group_id,
            title=title,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        subject: str,
        stage: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            subject=subject,
            stage=stage,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_submission(
        self,
        submission_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_submission_rejected(
            submission_key=submission_key,
            correlation_id=correlation_id,
        ))

    async def log_balances_reconciled(
        self,
        deltas: dict[UUID, Decimal],
        commit_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balances_reconciled(
            deltas=deltas,
            commit_id=commit_id,
            correlation_id=correlation_id,
        ))

    async def log_commit_conflict(
        self,
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a fund version conflict that triggered a retry."""
        await self.log(AuditEventBuilder.commit_conflict_retried(
            attempt=attempt,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        entity_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            entity_type=entity_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_report_generated(
        self,
        report_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.report_generated(
            report_type=report_type,
            result_count=result_count,
            correlation_id=correlation_id,
        ))

    async def log_balance_audit_failed(
        self,
        discrepancies: dict[UUID, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_audit_failed(
            discrepancies=discrepancies,
            correlation_id=correlation_id,
        ))

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

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording an offering).
    Pass it through all subsequent operations.
    """
    return uuid4()
