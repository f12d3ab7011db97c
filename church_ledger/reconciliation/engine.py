"""
Balance Reconciliation Engine

Keeps fund balances equal to the sum of what live records say they
should be, as records are created, edited and deleted.

    delta[f] = new_effect[f] - old_effect[f]     for f in old ∪ new

Create is old = {}, delete is new = {}. Funds whose delta is zero are
not written at all.

DESIGN DECISION: One operation, one commit.
The record write, every fund balance change and the ledger entries that
explain them go to storage as a single LedgerCommit. Each balance change
names the fund version it was computed from; if any fund moved in the
meantime storage rejects the whole commit, and the engine re-reads the
funds and tries again with fresh balances. Nothing is ever half-applied.

Records carry a version as well. An edit is written as version n+1 over
version n, and a delete names the version it removes, so an edit or
delete made from an out-of-date copy is refused rather than replayed.
"""

from decimal import Decimal
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from church_ledger.audit import AuditLogger
from church_ledger.config import LedgerSettings, get_settings
from church_ledger.models.fund import Fund, FundTransfer
from church_ledger.models.ledger import (
    FundBalanceChange,
    LedgerCommit,
    LedgerEntry,
    LedgerEntrySource,
)
from church_ledger.models.record import Allocation, FinancialRecord, RecordRef
from church_ledger.services.storage import (
    ConcurrencyConflictError,
    FundStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
)


logger = structlog.get_logger(__name__)


class ReconciliationError(Exception):
    """Base exception for balance reconciliation."""
    pass


class InsufficientFundsError(ReconciliationError):
    """A debit would take more than the fund holds."""

    def __init__(self, fund: Fund, requested: Decimal):
        self.fund_id = fund.id
        self.fund_name = fund.name
        self.available = fund.current_balance
        self.requested = requested
        super().__init__(
            f"Insufficient balance in {fund.name}: "
            f"available {fund.current_balance:.2f}, requested {requested:.2f}"
        )


class SameFundTransferError(ReconciliationError):
    """Source and destination of a transfer are the same fund."""
    pass


class ReconciliationResult(BaseModel):
    """What one reconciliation wrote."""

    commit_id: UUID
    deltas: dict[UUID, Decimal] = Field(
        default_factory=dict,
        description="Signed change per fund that was written"
    )
    balances: dict[UUID, Decimal] = Field(
        default_factory=dict,
        description="New balance of every changed fund"
    )
    attempts: int = Field(default=1, ge=1)
    record: Optional[FinancialRecord] = Field(
        default=None,
        description="The record as stored, None after a delete"
    )

    @property
    def funds_changed(self) -> int:
        return len(self.deltas)


def compute_deltas(old_effect: Allocation, new_effect: Allocation) -> dict[UUID, Decimal]:
    """
    Per-fund difference between two balance effects.

    Absent funds count as zero. Zero deltas are left out.
    """
    deltas = {}
    fund_ids = list(old_effect) + [f for f in new_effect if f not in old_effect]
    for fund_id in fund_ids:
        delta = new_effect.get(fund_id, Decimal("0")) - old_effect.get(fund_id, Decimal("0"))
        if delta != 0:
            deltas[fund_id] = delta
    return deltas


class BalanceReconciliationEngine:
    """
    Applies per-fund balance deltas for record changes and transfers.

    Collaborators are passed in explicitly; the engine holds no state
    of its own between operations.
    """

    def __init__(
        self,
        funds: FundStorageInterface,
        ledger: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._funds = funds
        self._ledger = ledger
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # Record operations
    # =========================================================================

    async def create(
        self,
        record: FinancialRecord,
        correlation_id: Optional[UUID] = None,
        check_balance: bool = False,
    ) -> ReconciliationResult:
        """Store a new record and apply its balance effect."""
        return await self.reconcile(None, record, correlation_id, check_balance)

    async def update(
        self,
        old: FinancialRecord,
        new: FinancialRecord,
        correlation_id: Optional[UUID] = None,
        check_balance: bool = False,
    ) -> ReconciliationResult:
        """Replace a record, applying only the difference in balance effects."""
        if old.id != new.id:
            raise ReconciliationError("Cannot update a record into a different record")
        return await self.reconcile(old, new, correlation_id, check_balance)

    async def delete(
        self,
        record: FinancialRecord,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """Remove a record and reverse its balance effect."""
        return await self.reconcile(record, None, correlation_id)

    async def reconcile(
        self,
        old: Optional[FinancialRecord],
        new: Optional[FinancialRecord],
        correlation_id: Optional[UUID] = None,
        check_balance: bool = False,
    ) -> ReconciliationResult:
        """
        Write the change from old to new (either may be None).

        Args:
            old: The record as stored, None on create
            new: The record as it should be stored, None on delete
            correlation_id: Ties ledger entries and audit events together
            check_balance: Refuse debits that would exceed a fund's balance
        """
        if old is None and new is None:
            raise ReconciliationError("Nothing to reconcile")

        if new is not None:
            # Storage accepts the write only over the version it replaces
            new = new.model_copy(update={"version": old.version + 1 if old else 0})

        subject = new if new is not None else old
        deltas = compute_deltas(
            old.balance_effect() if old else {},
            new.balance_effect() if new else {},
        )
        source = LedgerEntrySource(subject.kind.value)
        description = f"{subject.record_type} {subject.record_date.isoformat()}"

        async def build() -> LedgerCommit:
            changes, entries = await self._balance_changes(
                deltas,
                source=source,
                reference_id=subject.id,
                description=description,
                correlation_id=correlation_id,
                check_balance=check_balance,
            )
            return LedgerCommit(
                correlation_id=correlation_id,
                record_upserts=[new] if new is not None else [],
                record_deletes=(
                    [RecordRef(
                        kind=old.kind,
                        record_id=old.id,
                        expected_version=old.version,
                    )]
                    if new is None else []
                ),
                balance_changes=changes,
                entries=entries,
            )

        return await self._commit_with_retry(build, correlation_id, record=new)

    # =========================================================================
    # Fund operations
    # =========================================================================

    async def transfer(
        self,
        transfer: FundTransfer,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Move money between two funds: {from: -X, to: +X}.

        Raises:
            SameFundTransferError: If both funds are the same
            InsufficientFundsError: If the source holds less than X
            NotFoundError: If either fund doesn't exist
        """
        if transfer.from_fund_id == transfer.to_fund_id:
            raise SameFundTransferError("Cannot transfer to the same fund")

        deltas = {
            transfer.from_fund_id: -transfer.amount,
            transfer.to_fund_id: transfer.amount,
        }

        async def build() -> LedgerCommit:
            changes, entries = await self._balance_changes(
                deltas,
                source=LedgerEntrySource.TRANSFER,
                reference_id=transfer.id,
                description=transfer.description,
                correlation_id=correlation_id,
                check_balance=True,
            )
            return LedgerCommit(
                correlation_id=correlation_id,
                balance_changes=changes,
                entries=entries,
            )

        return await self._commit_with_retry(build, correlation_id)

    async def open_fund(
        self,
        fund: Fund,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Insert a new fund. A non-zero opening balance gets its own ledger
        entry so the fund's ledger explains its balance from day one.
        """
        fund = fund.model_copy(update={"version": 0})
        entries = []
        deltas = {}
        if fund.current_balance != 0:
            deltas[fund.id] = fund.current_balance
            entries.append(LedgerEntry(
                fund_id=fund.id,
                amount=fund.current_balance,
                source=LedgerEntrySource.OPENING_BALANCE,
                reference_id=fund.id,
                description=f"Opening balance of {fund.name}",
                correlation_id=correlation_id,
            ))

        commit = LedgerCommit(
            correlation_id=correlation_id,
            fund_inserts=[fund],
            entries=entries,
        )
        await self._ledger.commit(commit)
        logger.info("fund_opened", fund_id=str(fund.id), name=fund.name)
        return ReconciliationResult(
            commit_id=commit.commit_id,
            deltas=deltas,
            balances={fund.id: fund.current_balance},
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _balance_changes(
        self,
        deltas: dict[UUID, Decimal],
        source: LedgerEntrySource,
        reference_id: UUID,
        description: str,
        correlation_id: Optional[UUID],
        check_balance: bool,
    ) -> tuple[list[FundBalanceChange], list[LedgerEntry]]:
        """Read every affected fund fresh and turn deltas into CAS writes."""
        changes = []
        entries = []
        for fund_id, delta in deltas.items():
            fund = await self._funds.get_fund(fund_id)
            if fund is None:
                raise NotFoundError(f"Fund not found: {fund_id}")

            if check_balance and delta < 0 and fund.current_balance < -delta:
                raise InsufficientFundsError(fund, -delta)

            changes.append(FundBalanceChange(
                fund_id=fund_id,
                expected_version=fund.version,
                old_balance=fund.current_balance,
                new_balance=fund.current_balance + delta,
            ))
            entries.append(LedgerEntry(
                fund_id=fund_id,
                amount=delta,
                source=source,
                reference_id=reference_id,
                description=description[:500],
                correlation_id=correlation_id,
            ))
        return changes, entries

    async def _commit_with_retry(
        self,
        build: Callable[[], Awaitable[LedgerCommit]],
        correlation_id: Optional[UUID],
        record: Optional[FinancialRecord] = None,
    ) -> ReconciliationResult:
        """
        Build and write a commit, rebuilding it from fresh fund reads
        after every version conflict.

        Only fund conflicts are retried. A StaleRecordError means the
        caller's copy of the record is out of date, and no rebuild fixes that.

        Raises:
            ConcurrencyConflictError: If the last attempt still conflicts
            StaleRecordError: If the record changed since it was read
        """
        conflicts: list[tuple[int, str]] = []

        def remember_conflict(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            conflicts.append((retry_state.attempt_number, str(error)))
            logger.warning(
                "ledger_commit_conflict",
                attempt=retry_state.attempt_number,
                error=str(error),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ConcurrencyConflictError),
            stop=stop_after_attempt(self._settings.max_commit_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_min_seconds,
                min=self._settings.retry_wait_min_seconds,
                max=self._settings.retry_wait_max_seconds,
            ),
            before_sleep=remember_conflict,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    commit = await build()
                    await self._ledger.commit(commit)
        finally:
            for attempt_number, message in conflicts:
                await self._audit.log_commit_conflict(
                    attempt=attempt_number,
                    error_message=message,
                    correlation_id=correlation_id,
                )

        deltas = {change.fund_id: change.delta for change in commit.balance_changes}
        if deltas:
            await self._audit.log_balances_reconciled(
                deltas=deltas,
                commit_id=commit.commit_id,
                correlation_id=correlation_id,
            )

        return ReconciliationResult(
            commit_id=commit.commit_id,
            deltas=deltas,
            balances={
                change.fund_id: change.new_balance
                for change in commit.balance_changes
            },
            attempts=len(conflicts) + 1,
            record=record,
        )
