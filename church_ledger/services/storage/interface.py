"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Pass storage into every component explicitly instead of reaching
   for a global client

The interface is intentionally simple - we're not building a full ORM.

Fund balances are NOT writable through FundStorageInterface. The only
way to change a balance is LedgerStorageInterface.commit(), which writes
the balance, its ledger entry and the record that caused it together.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from church_ledger.models.audit import AuditEvent
from church_ledger.models.bill_group import BillGroup, BillSubgroup
from church_ledger.models.fund import Fund
from church_ledger.models.ledger import LedgerCommit, LedgerEntry, LedgerEntrySource
from church_ledger.models.record import FinancialRecord, Member, RecordKind, RecordRef


class FundStorageInterface(ABC):
    """Read access to funds plus edits that do not touch balances."""

    @abstractmethod
    async def get_fund(self, fund_id: UUID) -> Optional[Fund]:
        """
        Retrieve a fund by its ID.

        Returns:
            The fund if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_funds(self) -> list[Fund]:
        """
        List all funds in creation order.

        Order matters: the allocation policy picks the first fund
        whose name matches a keyword.
        """
        pass

    @abstractmethod
    async def update_fund_details(
        self,
        fund_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Fund:
        """
        Rename a fund or change its description.

        Raises:
            NotFoundError: If fund doesn't exist
            DuplicateError: If another fund already has the name
        """
        pass

    @abstractmethod
    async def delete_fund(self, fund_id: UUID) -> bool:
        """
        Delete a fund by ID.

        Returns:
            True if deleted, False if it did not exist
        """
        pass


class RecordStorageInterface(ABC):
    """Read access to offerings, bills and advances."""

    @abstractmethod
    async def get_record(
        self,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinancialRecord]:
        """
        Retrieve a record of the given kind by its ID.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        kind: RecordKind,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        member_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FinancialRecord]:
        """
        List records with optional filters, newest record date first.

        Args:
            kind: Which record kind to list
            date_from: Records on or after this date
            date_to: Records on or before this date
            member_id: Records credited to this member
            fund_id: Records with an allocation to this fund
            limit: Maximum number of results (None for all)
            offset: Number of results to skip
        """
        pass


class MemberStorageInterface(ABC):
    """Church member directory."""

    @abstractmethod
    async def save_member(self, member: Member) -> bool:
        """
        Insert or replace a member.

        Returns:
            True if saved successfully
        """
        pass

    @abstractmethod
    async def get_member(self, member_id: UUID) -> Optional[Member]:
        pass

    @abstractmethod
    async def list_members(self, search: Optional[str] = None) -> list[Member]:
        """List members sorted by name, optionally filtered by name substring."""
        pass


class LedgerStorageInterface(ABC):
    """
    Atomic writer of fund balances.

    A commit is applied completely or not at all.
    """

    @abstractmethod
    async def commit(self, commit: LedgerCommit) -> None:
        """
        Apply all writes of one operation atomically.

        Every balance change is a compare-and-swap against the fund
        version it was computed from. Record writes are checked the same
        way against the record version (see check_record_upsert).

        Raises:
            ConcurrencyConflictError: If any fund changed since it was read
            StaleRecordError: If an edited or deleted record changed since
                it was read
            NotFoundError: If a changed fund, edited record or deleted
                record doesn't exist
            DuplicateError: If an inserted fund or record already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        fund_id: Optional[UUID] = None,
        source: Optional[LedgerEntrySource] = None,
        reference_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        """
        List ledger entries in the order they were written.

        Args:
            fund_id: Entries for this fund only
            source: Entries caused by this kind of operation only
            reference_id: Entries of this record or transfer only
        """
        pass


class BillGroupStorageInterface(ABC):
    """Bill groups and their subgroups. No balances live here."""

    @abstractmethod
    async def save_group(self, group: BillGroup) -> bool:
        """Insert or replace a bill group."""
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[BillGroup]:
        pass

    @abstractmethod
    async def list_groups(self) -> list[BillGroup]:
        """List groups, newest first."""
        pass

    @abstractmethod
    async def delete_group(self, group_id: UUID) -> bool:
        """
        Delete a group together with its subgroups.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def save_subgroup(self, subgroup: BillSubgroup) -> bool:
        pass

    @abstractmethod
    async def get_subgroup(self, subgroup_id: UUID) -> Optional[BillSubgroup]:
        pass

    @abstractmethod
    async def list_subgroups(self, group_id: UUID) -> list[BillSubgroup]:
        """List the subgroups of one group by sort_order."""
        pass

    @abstractmethod
    async def delete_subgroup(self, subgroup_id: UUID) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one submission).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ConcurrencyConflictError(StorageError):
    """A fund changed between being read and being written."""

    def __init__(self, fund_id: UUID, expected_version: int, actual_version: int):
        self.fund_id = fund_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Fund {fund_id} is at version {actual_version}, "
            f"expected {expected_version}"
        )


class StaleRecordError(StorageError):
    """
    A record was edited or deleted from an out-of-date copy.

    Unlike ConcurrencyConflictError this is not retried: the caller's
    copy of the record is what is wrong, so it has to re-read it.
    """

    def __init__(self, record_id: UUID, expected_version: int, actual_version: int):
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Record {record_id} is at version {actual_version}, "
            f"expected {expected_version}"
        )


def check_record_upsert(
    record: FinancialRecord,
    stored: Optional[FinancialRecord],
) -> None:
    """
    Check that an upsert is written over the version it was derived from.

    Version 0 is an insert and must not find a stored record. Any other
    version is an edit of the stored version just below it.
    """
    if record.version == 0:
        if stored is not None:
            raise DuplicateError(f"{record.kind.value} {record.id} already exists")
        return
    if stored is None:
        raise NotFoundError(f"{record.kind.value} {record.id} not found")
    if stored.version != record.version - 1:
        raise StaleRecordError(record.id, record.version - 1, stored.version)


def check_record_delete(
    ref: RecordRef,
    stored: Optional[FinancialRecord],
) -> None:
    """Check that a delete targets the stored version of the record."""
    if stored is None:
        raise NotFoundError(f"{ref.kind.value} {ref.record_id} not found")
    if stored.version != ref.expected_version:
        raise StaleRecordError(ref.record_id, ref.expected_version, stored.version)


def filter_records(
    records: list[FinancialRecord],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    member_id: Optional[UUID] = None,
    fund_id: Optional[UUID] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[FinancialRecord]:
    """Apply the list_records filters in Python, newest first."""
    matched = []
    for record in records:
        if date_from and record.record_date < date_from:
            continue
        if date_to and record.record_date > date_to:
            continue
        if member_id and record.member_id != member_id:
            continue
        if fund_id and fund_id not in record.allocation:
            continue
        matched.append(record)

    matched.sort(key=lambda r: (r.record_date, r.created_at), reverse=True)

    if limit is None:
        return matched[offset:]
    return matched[offset:offset + limit]
