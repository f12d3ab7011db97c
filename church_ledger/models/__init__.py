"""
Data Models Package

This package contains all Pydantic models used in the Church Fund Ledger.
All data flowing through the system must conform to these schemas.
"""

from church_ledger.models.fund import (
    DEFAULT_FUNDS,
    Fund,
    FundTransfer,
)
from church_ledger.models.record import (
    Advance,
    AdvanceDraft,
    AdvanceStatus,
    Allocation,
    AnyRecord,
    Bill,
    BillDraft,
    BillFrequency,
    BillStatus,
    FinancialRecord,
    Member,
    Offering,
    OfferingDraft,
    OfferingType,
    PaymentMethod,
    RECORD_MODELS,
    RecordKind,
    RecordRef,
    RepaymentDraft,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransferDraft,
    ValidationIssue,
    ValidationResult,
    allocation_total,
)
from church_ledger.models.bill_group import (
    ApprovalStatus,
    BillGroup,
    BillGroupDraft,
    BillGroupStatus,
    BillGroupTotals,
    BillSubgroup,
    BillSubgroupDraft,
    Priority,
    SubgroupStatus,
    SubgroupTotals,
)
from church_ledger.models.ledger import (
    FundBalanceChange,
    LedgerCommit,
    LedgerEntry,
    LedgerEntrySource,
)
from church_ledger.models.report import (
    BalanceAuditResult,
    BalanceDiscrepancy,
    ReportRequest,
    ReportResult,
)
from church_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Fund models
    "DEFAULT_FUNDS",
    "Fund",
    "FundTransfer",
    # Record models
    "Advance",
    "AdvanceDraft",
    "AdvanceStatus",
    "Allocation",
    "AnyRecord",
    "Bill",
    "BillDraft",
    "BillFrequency",
    "BillStatus",
    "FinancialRecord",
    "Member",
    "Offering",
    "OfferingDraft",
    "OfferingType",
    "PaymentMethod",
    "RECORD_MODELS",
    "RecordKind",
    "RecordRef",
    "RepaymentDraft",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "TransferDraft",
    "ValidationIssue",
    "ValidationResult",
    "allocation_total",
    # Bill group models
    "ApprovalStatus",
    "BillGroup",
    "BillGroupDraft",
    "BillGroupStatus",
    "BillGroupTotals",
    "BillSubgroup",
    "BillSubgroupDraft",
    "Priority",
    "SubgroupStatus",
    "SubgroupTotals",
    # Ledger models
    "FundBalanceChange",
    "LedgerCommit",
    "LedgerEntry",
    "LedgerEntrySource",
    # Report models
    "BalanceAuditResult",
    "BalanceDiscrepancy",
    "ReportRequest",
    "ReportResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
