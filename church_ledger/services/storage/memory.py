"""
In-Memory Storage Implementation

Implements every storage interface on plain dicts. Used when Google
Sheets is not configured, and as the test backend.

Commits are applied under an asyncio.Lock after every check has passed,
so a rejected commit leaves nothing behind.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from church_ledger.models.audit import AuditEvent
from church_ledger.models.bill_group import BillGroup, BillSubgroup
from church_ledger.models.fund import Fund
from church_ledger.models.ledger import LedgerCommit, LedgerEntry, LedgerEntrySource
from church_ledger.models.record import FinancialRecord, Member, RecordKind
from church_ledger.services.storage.interface import (
    AuditStorageInterface,
    BillGroupStorageInterface,
    ConcurrencyConflictError,
    DuplicateError,
    FundStorageInterface,
    LedgerStorageInterface,
    MemberStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    check_record_delete,
    check_record_upsert,
    filter_records,
)


class InMemoryFinanceStorage(
    FundStorageInterface,
    RecordStorageInterface,
    MemberStorageInterface,
    LedgerStorageInterface,
    BillGroupStorageInterface,
    AuditStorageInterface,
):
    """All storage interfaces backed by process memory."""

    def __init__(self):
        # dicts keep insertion order, which is fund creation order
        self._funds: dict[UUID, Fund] = {}
        self._records: dict[RecordKind, dict[UUID, FinancialRecord]] = {
            kind: {} for kind in RecordKind
        }
        self._members: dict[UUID, Member] = {}
        self._groups: dict[UUID, BillGroup] = {}
        self._subgroups: dict[UUID, BillSubgroup] = {}
        self._entries: list[LedgerEntry] = []
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()
        self.commit_count = 0

    # =========================================================================
    # Funds
    # =========================================================================

    async def get_fund(self, fund_id: UUID) -> Optional[Fund]:
        fund = self._funds.get(fund_id)
        return fund.model_copy() if fund else None

    async def list_funds(self) -> list[Fund]:
        return [fund.model_copy() for fund in self._funds.values()]

    async def update_fund_details(
        self,
        fund_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Fund:
        async with self._lock:
            fund = self._funds.get(fund_id)
            if fund is None:
                raise NotFoundError(f"Fund not found: {fund_id}")

            if name is not None:
                self._check_name_free(name, exclude=fund_id)

            updates = {"updated_at": datetime.utcnow()}
            if name is not None:
                updates["name"] = name
            if description is not None:
                updates["description"] = description

            # Details don't bump the version: only balances are compare-and-swapped
            updated = fund.model_copy(update=updates)
            self._funds[fund_id] = updated
            return updated.model_copy()

    async def delete_fund(self, fund_id: UUID) -> bool:
        async with self._lock:
            return self._funds.pop(fund_id, None) is not None

    def _check_name_free(self, name: str, exclude: Optional[UUID] = None) -> None:
        for fund in self._funds.values():
            if fund.id != exclude and fund.name.lower() == name.strip().lower():
                raise DuplicateError(f"A fund named '{fund.name}' already exists")

    # =========================================================================
    # Records
    # =========================================================================

    async def get_record(
        self,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinancialRecord]:
        record = self._records[kind].get(record_id)
        return record.model_copy(deep=True) if record else None

    async def list_records(
        self,
        kind: RecordKind,
        date_from=None,
        date_to=None,
        member_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FinancialRecord]:
        records = filter_records(
            list(self._records[kind].values()),
            date_from=date_from,
            date_to=date_to,
            member_id=member_id,
            fund_id=fund_id,
            limit=limit,
            offset=offset,
        )
        return [record.model_copy(deep=True) for record in records]

    # =========================================================================
    # Members
    # =========================================================================

    async def save_member(self, member: Member) -> bool:
        async with self._lock:
            self._members[member.id] = member.model_copy()
            return True

    async def get_member(self, member_id: UUID) -> Optional[Member]:
        member = self._members.get(member_id)
        return member.model_copy() if member else None

    async def list_members(self, search: Optional[str] = None) -> list[Member]:
        members = [
            member.model_copy()
            for member in self._members.values()
            if not search or search.lower() in member.name.lower()
        ]
        members.sort(key=lambda m: m.name.lower())
        return members

    # =========================================================================
    # Bill groups
    # =========================================================================

    async def save_group(self, group: BillGroup) -> bool:
        async with self._lock:
            self._groups[group.id] = group.model_copy(deep=True)
            return True

    async def get_group(self, group_id: UUID) -> Optional[BillGroup]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def list_groups(self) -> list[BillGroup]:
        groups = [group.model_copy(deep=True) for group in self._groups.values()]
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def delete_group(self, group_id: UUID) -> bool:
        async with self._lock:
            if self._groups.pop(group_id, None) is None:
                return False
            self._subgroups = {
                sid: sub for sid, sub in self._subgroups.items()
                if sub.group_id != group_id
            }
            return True

    async def save_subgroup(self, subgroup: BillSubgroup) -> bool:
        async with self._lock:
            self._subgroups[subgroup.id] = subgroup.model_copy()
            return True

    async def get_subgroup(self, subgroup_id: UUID) -> Optional[BillSubgroup]:
        subgroup = self._subgroups.get(subgroup_id)
        return subgroup.model_copy() if subgroup else None

    async def list_subgroups(self, group_id: UUID) -> list[BillSubgroup]:
        subgroups = [
            sub.model_copy() for sub in self._subgroups.values()
            if sub.group_id == group_id
        ]
        subgroups.sort(key=lambda s: (s.sort_order, s.created_at))
        return subgroups

    async def delete_subgroup(self, subgroup_id: UUID) -> bool:
        async with self._lock:
            return self._subgroups.pop(subgroup_id, None) is not None

    # =========================================================================
    # Ledger
    # =========================================================================

    async def commit(self, commit: LedgerCommit) -> None:
        async with self._lock:
            self._check_commit(commit)

            now = datetime.utcnow()
            for fund in commit.fund_inserts:
                self._funds[fund.id] = fund.model_copy()

            for change in commit.balance_changes:
                fund = self._funds[change.fund_id]
                self._funds[change.fund_id] = fund.model_copy(update={
                    "current_balance": change.new_balance,
                    "version": fund.version + 1,
                    "updated_at": now,
                })

            for ref in commit.record_deletes:
                del self._records[ref.kind][ref.record_id]

            for record in commit.record_upserts:
                self._records[record.kind][record.id] = record.model_copy(deep=True)

            self._entries.extend(entry.model_copy() for entry in commit.entries)
            self.commit_count += 1

    def _check_commit(self, commit: LedgerCommit) -> None:
        """Raise before anything is written if the commit cannot apply."""
        for fund in commit.fund_inserts:
            if fund.id in self._funds:
                raise DuplicateError(f"Fund already exists: {fund.id}")
            self._check_name_free(fund.name)

        for change in commit.balance_changes:
            fund = self._funds.get(change.fund_id)
            if fund is None:
                raise NotFoundError(f"Fund not found: {change.fund_id}")
            if fund.version != change.expected_version:
                raise ConcurrencyConflictError(
                    change.fund_id, change.expected_version, fund.version
                )

        for ref in commit.record_deletes:
            check_record_delete(ref, self._records[ref.kind].get(ref.record_id))

        for record in commit.record_upserts:
            check_record_upsert(record, self._records[record.kind].get(record.id))

    async def list_entries(
        self,
        fund_id: Optional[UUID] = None,
        source: Optional[LedgerEntrySource] = None,
        reference_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        return [
            entry.model_copy()
            for entry in self._entries
            if (fund_id is None or entry.fund_id == fund_id)
            and (source is None or entry.source == source)
            and (reference_id is None or entry.reference_id == reference_id)
        ]

    # =========================================================================
    # Audit
    # =========================================================================

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
