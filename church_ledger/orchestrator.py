"""
Main Orchestrator for Church Fund Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Offerings (record, edit, delete)
2. Bills (record, edit, pay, delete)
3. Advances (issue, edit, repay, delete)
4. Manual income and expense transactions
5. Bill groups and subgroups
6. Funds (create, update, delete, transfer, seed defaults)
7. Members

Every flow follows the same path:
    validate → allocate → reconcile (one atomic commit) → audit

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written unless validation passed
- Balances only change through the reconciliation engine
- A submission already in flight cannot be submitted again
- Edits and deletes of the same record run one at a time
- Every step is audited
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, NamedTuple, Optional
from uuid import UUID

import structlog

from church_ledger.allocation import AllocationPolicy
from church_ledger.audit import AuditLogger, create_correlation_id
from church_ledger.config import Settings, get_settings
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
from church_ledger.models.fund import DEFAULT_FUNDS, Fund, FundTransfer
from church_ledger.models.record import (
    Advance,
    AdvanceDraft,
    AdvanceStatus,
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
    RecordKind,
    RepaymentDraft,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransferDraft,
    ValidationResult,
)
from church_ledger.reconciliation import (
    BalanceReconciliationEngine,
    ReconciliationError,
    ReconciliationResult,
)
from church_ledger.reports import ReportGenerator
from church_ledger.services.storage import (
    AuditStorageInterface,
    BillGroupStorageInterface,
    ConnectionError as StorageConnectionError,
    FundStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
    InMemoryFinanceStorage,
    LedgerStorageInterface,
    MemberStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
)
from church_ledger.validation import (
    FinancialRecordValidator,
    RecordValidationError,
    parse_amount,
)


logger = structlog.get_logger(__name__)


class DuplicateSubmissionError(Exception):
    """The same submission is already being processed."""

    def __init__(self, submission_key: str):
        self.submission_key = submission_key
        super().__init__(f"Submission {submission_key} is already in progress")


class FundInUseError(Exception):
    """A fund with transactions cannot be deleted."""
    pass


# =============================================================================
# SUBMISSION GUARD
# =============================================================================

class SubmissionGuard:
    """
    Rejects double submissions and serialises work on one record.

    A form generates a submission key when it is opened. While a
    submission with that key is being processed, a second one with the
    same key is rejected. Edits and deletes of one record wait for each
    other instead of interleaving their read and write.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._in_flight: set[str] = set()
        self._record_locks: dict[UUID, asyncio.Lock] = {}
        self._audit = audit_logger or AuditLogger()

    def is_in_flight(self, submission_key: str) -> bool:
        return submission_key in self._in_flight

    @asynccontextmanager
    async def submission(
        self,
        submission_key: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[None]:
        """Hold a submission key for the duration of the block."""
        if submission_key is None:
            yield
            return

        if submission_key in self._in_flight:
            await self._audit.log_duplicate_submission(submission_key, correlation_id)
            raise DuplicateSubmissionError(submission_key)

        self._in_flight.add(submission_key)
        try:
            yield
        finally:
            self._in_flight.discard(submission_key)

    @asynccontextmanager
    async def record(self, record_id: UUID) -> AsyncIterator[None]:
        """Exclusive access to one record for the duration of the block."""
        lock = self._record_locks.setdefault(record_id, asyncio.Lock())
        async with lock:
            yield


# =============================================================================
# FLOWS
# =============================================================================

class _LedgerFlow:
    """Collaborators and helpers shared by every flow."""

    def __init__(
        self,
        funds: FundStorageInterface,
        records: RecordStorageInterface,
        ledger: LedgerStorageInterface,
        members: Optional[MemberStorageInterface] = None,
        groups: Optional[BillGroupStorageInterface] = None,
        engine: Optional[BalanceReconciliationEngine] = None,
        validator: Optional[FinancialRecordValidator] = None,
        policy: Optional[AllocationPolicy] = None,
        guard: Optional[SubmissionGuard] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._funds = funds
        self._records = records
        self._ledger = ledger
        self._members = members
        self._groups = groups
        self._audit = audit_logger or AuditLogger()
        self._engine = engine or BalanceReconciliationEngine(
            funds, ledger, settings.ledger, self._audit
        )
        self._validator = validator or FinancialRecordValidator(
            funds, members, settings.app, group_storage=groups
        )
        self._policy = policy or AllocationPolicy(settings.ledger)
        self._guard = guard or SubmissionGuard(self._audit)

    async def _require_valid(
        self,
        result: ValidationResult,
        correlation_id: UUID,
    ) -> None:
        """Audit and raise if validation failed."""
        if result.is_valid:
            return

        await self._audit.log_validation_failed(
            subject=result.subject,
            stage="schema" if not result.schema_valid else "semantic",
            issues=[
                issue.model_dump()
                for issue in result.issues
                if issue.severity == "error"
            ],
            correlation_id=correlation_id,
        )
        raise RecordValidationError(result)

    async def _apply(self, operation, entity_type: str, correlation_id: UUID) -> ReconciliationResult:
        """Await a reconciliation, auditing storage and balance failures."""
        try:
            return await operation
        except StorageConnectionError as e:
            await self._audit.log_external_service_error(
                service="storage",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise
        except (StorageError, ReconciliationError) as e:
            await self._audit.log_save_failed(
                entity_type=entity_type,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _load(self, kind: RecordKind, record_id: UUID) -> FinancialRecord:
        record = await self._records.get_record(kind, record_id)
        if record is None:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {record_id}")
        return record


class OfferingFlow(_LedgerFlow):
    """
    Offerings collected at services.

    Allocation is recomputed from type and amount on every save, so
    changing an offering's type moves its money to the right fund.
    """

    async def record(
        self,
        draft: OfferingDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Offering:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id):
            await self._require_valid(
                await self._validator.validate_offering(draft), correlation_id
            )
            offering = await self._build(draft)
            offering = (await self._apply(
                self._engine.create(offering, correlation_id),
                "offering",
                correlation_id,
            )).record

        await self._audit.log_record_created(
            "offering", offering.id, offering.amount, correlation_id
        )
        return offering

    async def edit(
        self,
        offering_id: UUID,
        draft: OfferingDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Offering:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id), \
                self._guard.record(offering_id):
            old = await self._load(RecordKind.OFFERING, offering_id)
            await self._require_valid(
                await self._validator.validate_offering(draft), correlation_id
            )
            offering = await self._build(draft, existing=old)
            offering = (await self._apply(
                self._engine.update(old, offering, correlation_id),
                "offering",
                correlation_id,
            )).record

        await self._audit.log_record_updated(
            "offering", offering.id, old.amount, offering.amount, correlation_id
        )
        return offering

    async def delete(
        self,
        offering_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.record(offering_id):
            old = await self._load(RecordKind.OFFERING, offering_id)
            await self._apply(
                self._engine.delete(old, correlation_id),
                "offering",
                correlation_id,
            )

        await self._audit.log_record_deleted(
            "offering", old.id, old.amount, correlation_id
        )

    async def list_offerings(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        member_id: Optional[UUID] = None,
    ) -> list[FinancialRecord]:
        return await self._records.list_records(
            RecordKind.OFFERING,
            date_from=date_from,
            date_to=date_to,
            member_id=member_id,
        )

    async def _build(
        self,
        draft: OfferingDraft,
        existing: Optional[FinancialRecord] = None,
    ) -> Offering:
        amount = parse_amount(draft.amount)
        offering_type = OfferingType(draft.offering_type)
        funds = await self._funds.list_funds()

        fields = dict(
            offering_type=offering_type,
            amount=amount,
            record_date=draft.service_date,
            member_id=draft.member_id,
            contributors_count=draft.contributors_count,
            notes=draft.notes,
            allocation=self._policy.allocate_offering(offering_type, amount, funds),
        )
        if existing is not None:
            fields.update(
                id=existing.id,
                created_at=existing.created_at,
                updated_at=datetime.utcnow(),
            )
        return Offering(**fields)


class BillFlow(_LedgerFlow):
    """
    Bills owed to vendors.

    A bill only moves money while it is paid, so marking a bill paid
    or unpaid is an ordinary edit: the engine sees the balance effect
    appear or disappear.
    """

    async def record(
        self,
        draft: BillDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id):
            await self._require_valid(
                await self._validator.validate_bill(draft), correlation_id
            )
            bill = await self._build(draft)
            bill = (await self._apply(
                self._engine.create(bill, correlation_id),
                "bill",
                correlation_id,
            )).record

        await self._audit.log_record_created("bill", bill.id, bill.amount, correlation_id)
        return bill

    async def edit(
        self,
        bill_id: UUID,
        draft: BillDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id), \
                self._guard.record(bill_id):
            old = await self._load(RecordKind.BILL, bill_id)
            await self._require_valid(
                await self._validator.validate_bill(draft, existing=old), correlation_id
            )
            bill = await self._build(draft, existing=old)
            bill = (await self._apply(
                self._engine.update(old, bill, correlation_id),
                "bill",
                correlation_id,
            )).record

        await self._audit.log_record_updated(
            "bill", bill.id, old.amount, bill.amount, correlation_id
        )
        return bill

    async def set_status(
        self,
        bill_id: UUID,
        status: BillStatus,
        paid_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        """Mark a bill paid, pending or overdue."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.record(bill_id):
            old = await self._load(RecordKind.BILL, bill_id)
            if status == BillStatus.PAID:
                paid_date = paid_date or old.paid_date or max(date.today(), old.record_date)
            else:
                paid_date = None

            bill = old.model_copy(update={
                "status": status,
                "paid_date": paid_date,
                "updated_at": datetime.utcnow(),
            })
            bill = Bill.model_validate(bill.model_dump())
            bill = (await self._apply(
                self._engine.update(old, bill, correlation_id),
                "bill",
                correlation_id,
            )).record

        await self._audit.log_record_updated(
            "bill", bill.id, old.amount, bill.amount, correlation_id
        )
        return bill

    async def delete(
        self,
        bill_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.record(bill_id):
            old = await self._load(RecordKind.BILL, bill_id)
            await self._apply(
                self._engine.delete(old, correlation_id),
                "bill",
                correlation_id,
            )

        await self._audit.log_record_deleted("bill", old.id, old.amount, correlation_id)

    async def list_bills(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[BillStatus] = None,
    ) -> list[FinancialRecord]:
        bills = await self._records.list_records(
            RecordKind.BILL, date_from=date_from, date_to=date_to
        )
        if status is not None:
            bills = [b for b in bills if b.status == status]
        return bills

    async def _build(
        self,
        draft: BillDraft,
        existing: Optional[FinancialRecord] = None,
    ) -> Bill:
        amount = parse_amount(draft.amount)
        category = draft.category or "General"
        status = BillStatus(draft.status) if draft.status else BillStatus.PENDING
        bill_date = draft.bill_date or (existing.record_date if existing else date.today())

        paid_date = draft.paid_date
        if status == BillStatus.PAID and paid_date is None:
            paid_date = max(date.today(), bill_date)
        elif status != BillStatus.PAID:
            paid_date = None

        fund_id = draft.fund_id
        if fund_id is None:
            fund_id = await self._group_default_fund(draft.group_id, draft.subgroup_id)

        funds = await self._funds.list_funds()
        fields = dict(
            vendor_name=draft.vendor_name,
            amount=amount,
            record_date=bill_date,
            due_date=draft.due_date,
            category=category,
            frequency=BillFrequency(draft.frequency) if draft.frequency else BillFrequency.ONE_TIME,
            status=status,
            paid_date=paid_date,
            fund_id=fund_id,
            document_path=draft.document_path,
            notes=draft.notes,
            group_id=draft.group_id,
            subgroup_id=draft.subgroup_id,
            allocation=self._policy.allocate_bill(category, amount, funds, fund_id),
        )
        if existing is not None:
            fields.update(
                id=existing.id,
                created_at=existing.created_at,
                updated_at=datetime.utcnow(),
            )
        return Bill(**fields)

    async def _group_default_fund(
        self,
        group_id: Optional[UUID],
        subgroup_id: Optional[UUID],
    ) -> Optional[UUID]:
        """The subgroup's default fund, else the group's."""
        if self._groups is None:
            return None
        if subgroup_id is not None:
            subgroup = await self._groups.get_subgroup(subgroup_id)
            if subgroup is not None and subgroup.default_fund_id is not None:
                return subgroup.default_fund_id
        if group_id is not None:
            group = await self._groups.get_group(group_id)
            if group is not None:
                return group.default_fund_id
        return None


class AdvanceFlow(_LedgerFlow):
    """
    Advances paid out of a fund and returned later.

    Issuing checks the fund can cover the advance. Each repayment
    credits the fund with what came back.
    """

    async def issue(
        self,
        draft: AdvanceDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Advance:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id):
            await self._require_valid(
                await self._validator.validate_advance(draft), correlation_id
            )
            amount = parse_amount(draft.amount)
            funds = await self._funds.list_funds()
            advance = Advance(
                recipient_name=draft.recipient_name,
                purpose=draft.purpose,
                fund_id=draft.fund_id,
                amount=amount,
                record_date=draft.advance_date,
                expected_return_date=draft.expected_return_date,
                notes=draft.notes,
                allocation=self._policy.allocate_advance(draft.fund_id, amount, funds),
            )
            # Balance is re-checked inside the commit against fresh reads
            advance = (await self._apply(
                self._engine.create(advance, correlation_id, check_balance=True),
                "advance",
                correlation_id,
            )).record

        await self._audit.log_record_created(
            "advance", advance.id, advance.amount, correlation_id
        )
        return advance

    async def record_repayment(
        self,
        advance_id: UUID,
        draft: RepaymentDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Advance:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id), \
                self._guard.record(advance_id):
            old = await self._load(RecordKind.ADVANCE, advance_id)
            await self._require_valid(
                await self._validator.validate_repayment(draft, old), correlation_id
            )
            returned = old.amount_returned + parse_amount(draft.amount)
            advance = old.model_copy(update={
                "amount_returned": returned,
                "status": (
                    AdvanceStatus.RETURNED if returned == old.amount
                    else AdvanceStatus.PARTIAL
                ),
                "notes": draft.notes or old.notes,
                "updated_at": datetime.utcnow(),
            })
            advance = Advance.model_validate(advance.model_dump())
            advance = (await self._apply(
                self._engine.update(old, advance, correlation_id),
                "advance",
                correlation_id,
            )).record

        await self._audit.log_repayment_recorded(
            advance.id,
            parse_amount(draft.amount),
            advance.outstanding_amount,
            correlation_id,
        )
        return advance

    async def edit(
        self,
        advance_id: UUID,
        draft: AdvanceDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Advance:
        """
        Change an advance's details, amount or fund.

        Repayments already recorded stay with the advance. Moving it to
        another fund gives the old fund its money back and debits the
        new one, which must cover what is still outstanding.
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id), \
                self._guard.record(advance_id):
            old = await self._load(RecordKind.ADVANCE, advance_id)
            await self._require_valid(
                await self._validator.validate_advance(draft, existing=old), correlation_id
            )
            amount = parse_amount(draft.amount)
            funds = await self._funds.list_funds()
            if old.amount_returned == 0:
                status = AdvanceStatus.OUTSTANDING
            elif old.amount_returned == amount:
                status = AdvanceStatus.RETURNED
            else:
                status = AdvanceStatus.PARTIAL

            advance = Advance(
                id=old.id,
                created_at=old.created_at,
                updated_at=datetime.utcnow(),
                recipient_name=draft.recipient_name,
                purpose=draft.purpose,
                fund_id=draft.fund_id,
                amount=amount,
                amount_returned=old.amount_returned,
                status=status,
                record_date=draft.advance_date,
                expected_return_date=draft.expected_return_date,
                member_id=old.member_id,
                notes=draft.notes,
                allocation=self._policy.allocate_advance(draft.fund_id, amount, funds),
            )
            advance = (await self._apply(
                self._engine.update(old, advance, correlation_id, check_balance=True),
                "advance",
                correlation_id,
            )).record

        await self._audit.log_record_updated(
            "advance", advance.id, old.amount, advance.amount, correlation_id
        )
        return advance

    async def delete(
        self,
        advance_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.record(advance_id):
            old = await self._load(RecordKind.ADVANCE, advance_id)
            await self._apply(
                self._engine.delete(old, correlation_id),
                "advance",
                correlation_id,
            )

        await self._audit.log_record_deleted("advance", old.id, old.amount, correlation_id)

    async def list_advances(
        self,
        status: Optional[AdvanceStatus] = None,
    ) -> list[FinancialRecord]:
        advances = await self._records.list_records(RecordKind.ADVANCE)
        if status is not None:
            advances = [a for a in advances if a.status == status]
        return advances


class TransactionFlow(_LedgerFlow):
    """
    Manual income and expenses booked straight against one fund.

    An expense is a debit and must be covered by its fund, both when it
    is recorded and when an edit makes it larger or moves it.
    """

    async def record(
        self,
        draft: TransactionDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id):
            await self._require_valid(
                await self._validator.validate_transaction(draft), correlation_id
            )
            transaction = await self._build(draft)
            transaction = (await self._apply(
                self._engine.create(transaction, correlation_id, check_balance=True),
                "transaction",
                correlation_id,
            )).record

        await self._audit.log_record_created(
            "transaction", transaction.id, transaction.amount, correlation_id
        )
        return transaction

    async def edit(
        self,
        transaction_id: UUID,
        draft: TransactionDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id), \
                self._guard.record(transaction_id):
            old = await self._load(RecordKind.TRANSACTION, transaction_id)
            await self._require_valid(
                await self._validator.validate_transaction(draft, existing=old),
                correlation_id,
            )
            transaction = await self._build(draft, existing=old)
            transaction = (await self._apply(
                self._engine.update(old, transaction, correlation_id, check_balance=True),
                "transaction",
                correlation_id,
            )).record

        await self._audit.log_record_updated(
            "transaction", transaction.id, old.amount, transaction.amount, correlation_id
        )
        return transaction

    async def delete(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.record(transaction_id):
            old = await self._load(RecordKind.TRANSACTION, transaction_id)
            await self._apply(
                self._engine.delete(old, correlation_id),
                "transaction",
                correlation_id,
            )

        await self._audit.log_record_deleted(
            "transaction", old.id, old.amount, correlation_id
        )

    async def list_transactions(
        self,
        fund_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> list[FinancialRecord]:
        transactions = await self._records.list_records(
            RecordKind.TRANSACTION,
            date_from=date_from,
            date_to=date_to,
            fund_id=fund_id,
        )
        if transaction_type is not None:
            transactions = [
                t for t in transactions if t.transaction_type == transaction_type
            ]
        return transactions[:limit] if limit is not None else transactions

    async def _build(
        self,
        draft: TransactionDraft,
        existing: Optional[FinancialRecord] = None,
    ) -> Transaction:
        amount = parse_amount(draft.amount)
        transaction_type = TransactionType(draft.transaction_type)
        category = draft.category or "General"
        funds = await self._funds.list_funds()

        fields = dict(
            transaction_type=transaction_type,
            amount=amount,
            fund_id=draft.fund_id,
            description=draft.description or f"{transaction_type.value.capitalize()}: {category}",
            category=category,
            payment_method=(
                PaymentMethod(draft.payment_method) if draft.payment_method
                else PaymentMethod.CASH
            ),
            record_date=draft.transaction_date or (
                existing.record_date if existing else date.today()
            ),
            receipt_number=draft.receipt_number,
            notes=draft.notes,
            allocation=self._policy.allocate_transaction(draft.fund_id, amount, funds),
        )
        if existing is not None:
            fields.update(
                id=existing.id,
                created_at=existing.created_at,
                updated_at=datetime.utcnow(),
            )
        return Transaction(**fields)


class BillGroupInUseError(Exception):
    """A bill group or subgroup still has bills filed under it."""
    pass


class BillGroupFlow(_LedgerFlow):
    """
    Bill groups and subgroups.

    Groups hold no money themselves. Their totals are summed from the
    bills filed under them whenever they are asked for.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self._groups is None:
            raise ValueError("Bill groups need bill group storage")

    # =========================================================================
    # Groups
    # =========================================================================

    async def create_group(
        self,
        draft: BillGroupDraft,
        correlation_id: Optional[UUID] = None,
    ) -> BillGroup:
        correlation_id = correlation_id or create_correlation_id()

        await self._require_valid(
            await self._validator.validate_bill_group(draft), correlation_id
        )
        group = BillGroup(
            title=draft.title,
            description=draft.description,
            status=BillGroupStatus(draft.status or BillGroupStatus.DRAFT.value),
            priority=Priority(draft.priority or Priority.MEDIUM.value),
            default_due_date=draft.default_due_date,
            default_fund_id=draft.default_fund_id,
            responsible_parties=draft.responsible_parties or [],
            notes=draft.notes,
        )
        await self._groups.save_group(group)
        await self._audit.log_bill_group_saved(
            "bill_group", group.id, group.title, correlation_id=correlation_id
        )
        return group

    async def update_group(
        self,
        group_id: UUID,
        draft: BillGroupDraft,
        approved_by: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BillGroup:
        """
        Update a group. Fields left empty in the draft keep their value.

        Approving a group stamps who approved it and when. Moving it to
        any other approval status clears both.
        """
        correlation_id = correlation_id or create_correlation_id()

        current = await self._groups.get_group(group_id)
        if current is None:
            raise NotFoundError(f"Bill group not found: {group_id}")

        draft = draft.model_copy(update={"title": draft.title or current.title})
        await self._require_valid(
            await self._validator.validate_bill_group(draft), correlation_id
        )

        approval = ApprovalStatus(draft.approval_status or current.approval_status.value)
        updates = {
            "title": draft.title,
            "status": BillGroupStatus(draft.status or current.status.value),
            "priority": Priority(draft.priority or current.priority.value),
            "approval_status": approval,
            "updated_at": datetime.utcnow(),
        }
        for field in ("description", "default_due_date", "default_fund_id",
                      "responsible_parties", "notes"):
            value = getattr(draft, field)
            if value is not None:
                updates[field] = value

        if approval == ApprovalStatus.APPROVED:
            if current.approval_status != ApprovalStatus.APPROVED:
                updates["approved_by"] = approved_by
                updates["approved_at"] = datetime.utcnow()
        else:
            updates["approved_by"] = None
            updates["approved_at"] = None

        group = BillGroup.model_validate(current.model_copy(update=updates).model_dump())
        await self._groups.save_group(group)

        changes = {
            key: str(value) for key, value in updates.items()
            if key != "updated_at" and getattr(current, key) != value
        }
        await self._audit.log_bill_group_saved(
            "bill_group", group.id, group.title, changes, correlation_id
        )
        return group

    async def delete_group(
        self,
        group_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a group and its subgroups.

        Raises:
            NotFoundError: If the group doesn't exist
            BillGroupInUseError: If bills are still filed under it
        """
        correlation_id = correlation_id or create_correlation_id()

        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Bill group not found: {group_id}")
        if await self._bills_in(group_id=group_id):
            raise BillGroupInUseError("Cannot delete a bill group that still has bills")

        await self._groups.delete_group(group_id)
        await self._audit.log_bill_group_deleted(
            "bill_group", group.id, group.title, correlation_id
        )

    async def list_groups(
        self,
        status: Optional[BillGroupStatus] = None,
        approval_status: Optional[ApprovalStatus] = None,
    ) -> list[BillGroup]:
        groups = await self._groups.list_groups()
        if status is not None:
            groups = [g for g in groups if g.status == status]
        if approval_status is not None:
            groups = [g for g in groups if g.approval_status == approval_status]
        return groups

    async def group_totals(self, group_id: UUID) -> BillGroupTotals:
        """Sum the bills filed under a group, overall and per subgroup."""
        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Bill group not found: {group_id}")

        bills = await self._bills_in(group_id=group_id)
        totals = BillGroupTotals(group_id=group.id, title=group.title)
        sub_totals = {
            sub.id: SubgroupTotals(subgroup_id=sub.id, title=sub.title)
            for sub in await self._groups.list_subgroups(group_id)
        }

        for bill in bills:
            paid = bill.amount if bill.status == BillStatus.PAID else Decimal("0")
            targets = [totals]
            if bill.subgroup_id in sub_totals:
                targets.append(sub_totals[bill.subgroup_id])
            for target in targets:
                target.total_amount += bill.amount
                target.paid_amount += paid
                target.bill_count += 1

        totals.subgroups = list(sub_totals.values())
        return totals

    # =========================================================================
    # Subgroups
    # =========================================================================

    async def create_subgroup(
        self,
        draft: BillSubgroupDraft,
        correlation_id: Optional[UUID] = None,
    ) -> BillSubgroup:
        correlation_id = correlation_id or create_correlation_id()

        await self._require_valid(
            await self._validator.validate_bill_subgroup(draft), correlation_id
        )
        subgroup = BillSubgroup(
            group_id=draft.group_id,
            title=draft.title,
            purpose=draft.purpose,
            status=SubgroupStatus(draft.status or SubgroupStatus.ACTIVE.value),
            priority=Priority(draft.priority or Priority.MEDIUM.value),
            default_fund_id=draft.default_fund_id,
            default_due_date=draft.default_due_date or date.today(),
            allocation_percentage=(
                Decimal(draft.allocation_percentage)
                if draft.allocation_percentage else None
            ),
            sort_order=draft.sort_order or 0,
            notes=draft.notes,
        )
        await self._groups.save_subgroup(subgroup)
        await self._audit.log_bill_group_saved(
            "bill_subgroup", subgroup.id, subgroup.title, correlation_id=correlation_id
        )
        return subgroup

    async def update_subgroup(
        self,
        subgroup_id: UUID,
        draft: BillSubgroupDraft,
        correlation_id: Optional[UUID] = None,
    ) -> BillSubgroup:
        """Fields left empty in the draft keep their value. The group cannot change."""
        correlation_id = correlation_id or create_correlation_id()

        current = await self._groups.get_subgroup(subgroup_id)
        if current is None:
            raise NotFoundError(f"Bill subgroup not found: {subgroup_id}")

        draft = draft.model_copy(update={
            "group_id": current.group_id,
            "title": draft.title or current.title,
        })
        await self._require_valid(
            await self._validator.validate_bill_subgroup(draft), correlation_id
        )

        updates = {
            "title": draft.title,
            "status": SubgroupStatus(draft.status or current.status.value),
            "priority": Priority(draft.priority or current.priority.value),
            "updated_at": datetime.utcnow(),
        }
        for field in ("purpose", "default_fund_id", "default_due_date", "sort_order", "notes"):
            value = getattr(draft, field)
            if value is not None:
                updates[field] = value
        if draft.allocation_percentage:
            updates["allocation_percentage"] = Decimal(draft.allocation_percentage)

        subgroup = BillSubgroup.model_validate(
            current.model_copy(update=updates).model_dump()
        )
        await self._groups.save_subgroup(subgroup)
        await self._audit.log_bill_group_saved(
            "bill_subgroup", subgroup.id, subgroup.title, correlation_id=correlation_id
        )
        return subgroup

    async def delete_subgroup(
        self,
        subgroup_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        subgroup = await self._groups.get_subgroup(subgroup_id)
        if subgroup is None:
            raise NotFoundError(f"Bill subgroup not found: {subgroup_id}")
        if await self._bills_in(subgroup_id=subgroup_id):
            raise BillGroupInUseError("Cannot delete a subgroup that still has bills")

        await self._groups.delete_subgroup(subgroup_id)
        await self._audit.log_bill_group_deleted(
            "bill_subgroup", subgroup.id, subgroup.title, correlation_id
        )

    async def list_subgroups(self, group_id: UUID) -> list[BillSubgroup]:
        return await self._groups.list_subgroups(group_id)

    async def _bills_in(
        self,
        group_id: Optional[UUID] = None,
        subgroup_id: Optional[UUID] = None,
    ) -> list[FinancialRecord]:
        bills = await self._records.list_records(RecordKind.BILL)
        return [
            bill for bill in bills
            if (group_id is None or bill.group_id == group_id)
            and (subgroup_id is None or bill.subgroup_id == subgroup_id)
        ]


class FundFlow(_LedgerFlow):
    """Creating, editing and deleting funds, and moving money between them."""

    async def create_fund(
        self,
        name: str,
        description: Optional[str] = None,
        opening_balance: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Fund:
        correlation_id = correlation_id or create_correlation_id()

        await self._require_valid(
            await self._validator.validate_fund(name, opening_balance), correlation_id
        )
        balance = Decimal("0")
        if opening_balance is not None and str(opening_balance).strip():
            balance = Decimal(str(opening_balance).replace(",", "").strip())

        fund = Fund(name=name, description=description, current_balance=balance)
        await self._apply(
            self._engine.open_fund(fund, correlation_id),
            "fund",
            correlation_id,
        )
        await self._audit.log_fund_created(fund.id, fund.name, balance, correlation_id)
        return fund

    async def update_fund(
        self,
        fund_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Fund:
        """Rename a fund or change its description. Balances are untouched."""
        correlation_id = correlation_id or create_correlation_id()

        if name is not None:
            await self._require_valid(
                await self._validator.validate_fund(name, fund_id=fund_id),
                correlation_id,
            )

        fund = await self._funds.update_fund_details(fund_id, name, description)

        changes = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        await self._audit.log_fund_updated(fund_id, changes, correlation_id)
        return fund

    async def delete_fund(
        self,
        fund_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a fund that has never been used.

        Raises:
            NotFoundError: If the fund doesn't exist
            FundInUseError: If the fund has ledger entries or allocated records
        """
        correlation_id = correlation_id or create_correlation_id()

        fund = await self._funds.get_fund(fund_id)
        if fund is None:
            raise NotFoundError(f"Fund not found: {fund_id}")

        in_use = bool(await self._ledger.list_entries(fund_id=fund_id))
        for kind in RecordKind:
            if in_use:
                break
            in_use = bool(await self._records.list_records(kind, fund_id=fund_id, limit=1))
        if in_use:
            raise FundInUseError("Cannot delete fund with existing transactions")

        await self._funds.delete_fund(fund_id)
        await self._audit.log_fund_deleted(fund.id, fund.name, correlation_id)

    async def list_funds(self) -> list[Fund]:
        return await self._funds.list_funds()

    async def transfer(
        self,
        draft: TransferDraft,
        submission_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> FundTransfer:
        """Move money from one fund to another."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._guard.submission(submission_key, correlation_id):
            await self._require_valid(
                await self._validator.validate_transfer(draft), correlation_id
            )
            transfer = FundTransfer(
                from_fund_id=draft.from_fund_id,
                to_fund_id=draft.to_fund_id,
                amount=parse_amount(draft.amount),
                description=draft.notes or "Fund transfer",
                transfer_date=draft.transfer_date or date.today(),
            )
            await self._apply(
                self._engine.transfer(transfer, correlation_id),
                "transfer",
                correlation_id,
            )

        await self._audit.log_transfer_completed(
            transfer.id,
            transfer.from_fund_id,
            transfer.to_fund_id,
            transfer.amount,
            correlation_id,
        )
        return transfer

    async def seed_default_funds(self) -> list[Fund]:
        """Create Management, Mission and Building if they don't exist yet."""
        existing = {fund.name.lower() for fund in await self._funds.list_funds()}
        created = []
        for name, description in DEFAULT_FUNDS:
            if name.lower() not in existing:
                created.append(await self.create_fund(name, description))
        if created:
            logger.info("default_funds_seeded", funds=[f.name for f in created])
        return created


class MemberFlow:
    """Church member directory."""

    def __init__(
        self,
        members: MemberStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._members = members
        self._audit = audit_logger or AuditLogger()

    async def add_member(
        self,
        name: str,
        phone: Optional[str] = None,
        fellowship_name: Optional[str] = None,
        job: Optional[str] = None,
        location: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Member:
        member = Member(
            name=name,
            phone=phone,
            fellowship_name=fellowship_name,
            job=job,
            location=location,
        )
        await self._members.save_member(member)
        await self._audit.log_member_saved(member.id, member.name, correlation_id)
        return member

    async def update_member(self, member: Member, correlation_id: Optional[UUID] = None) -> Member:
        if await self._members.get_member(member.id) is None:
            raise NotFoundError(f"Member not found: {member.id}")
        member = member.model_copy(update={"updated_at": datetime.utcnow()})
        await self._members.save_member(member)
        await self._audit.log_member_saved(member.id, member.name, correlation_id)
        return member

    async def search(self, query: Optional[str] = None) -> list[Member]:
        return await self._members.list_members(search=query)


# =============================================================================
# FACTORY
# =============================================================================

class AppComponents(NamedTuple):
    offerings: OfferingFlow
    bills: BillFlow
    advances: AdvanceFlow
    transactions: TransactionFlow
    bill_groups: BillGroupFlow
    funds: FundFlow
    members: MemberFlow
    reports: ReportGenerator
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_storage: bool = True,
    settings: Optional[Settings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False (or leave Sheets unconfigured) to run
                    on in-memory storage.

    All flows share one storage, one audit logger and one submission
    guard, so duplicate detection and record locks span every flow.
    """
    settings = settings or get_settings()
    sheets_client = None
    audit_storage: Optional[AuditStorageInterface] = None

    storage = None
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            storage = GoogleSheetsFinanceStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storage = None

    if storage is None:
        memory = InMemoryFinanceStorage()
        storage = memory
        audit_storage = memory

    audit_logger = AuditLogger(audit_storage)
    guard = SubmissionGuard(audit_logger)
    engine = BalanceReconciliationEngine(storage, storage, settings.ledger, audit_logger)

    flow_args = dict(
        funds=storage,
        records=storage,
        ledger=storage,
        members=storage,
        groups=storage,
        engine=engine,
        guard=guard,
        audit_logger=audit_logger,
        settings=settings,
    )

    return AppComponents(
        offerings=OfferingFlow(**flow_args),
        bills=BillFlow(**flow_args),
        advances=AdvanceFlow(**flow_args),
        transactions=TransactionFlow(**flow_args),
        bill_groups=BillGroupFlow(**flow_args),
        funds=FundFlow(**flow_args),
        members=MemberFlow(storage, audit_logger),
        reports=ReportGenerator(storage, storage, storage, storage, audit_logger),
        sheets_client=sheets_client,
    )
