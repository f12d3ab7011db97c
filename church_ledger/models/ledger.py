"""
Ledger Models

A LedgerCommit is everything one user action changes, written to storage
in a single atomic step:
- the record being created, edited or deleted
- the new balance of every fund whose balance changes
- one append-only ledger entry per changed fund

DESIGN DECISION: Balances are never written on their own.
Every balance change travels with the ledger entry that explains it, so
at any time a fund's balance must equal the sum of its ledger entries.
The balance audit report checks exactly that.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from church_ledger.models.fund import Fund
from church_ledger.models.record import AnyRecord, RecordRef


class LedgerEntrySource(str, Enum):
    """What caused a ledger entry."""
    OFFERING = "offering"
    BILL = "bill"
    ADVANCE = "advance"
    TRANSACTION = "transaction"
    TRANSFER = "transfer"
    OPENING_BALANCE = "opening_balance"


class LedgerEntry(BaseModel):
    """One signed change to one fund's balance. Never updated or deleted."""

    entry_id: UUID = Field(default_factory=uuid4)
    fund_id: UUID
    amount: Decimal = Field(
        ...,
        decimal_places=2,
        description="Signed change: positive credits the fund"
    )
    source: LedgerEntrySource
    reference_id: UUID = Field(
        ...,
        description="Record, transfer or fund the entry belongs to"
    )
    description: str = Field(default="", max_length=500)
    correlation_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('amount')
    @classmethod
    def validate_non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("Ledger entries cannot be zero")
        return v


class FundBalanceChange(BaseModel):
    """
    Compare-and-swap write of one fund balance.

    Storage applies it only if the fund still has expected_version.
    """

    fund_id: UUID
    expected_version: int = Field(..., ge=0)
    old_balance: Decimal
    new_balance: Decimal

    @property
    def delta(self) -> Decimal:
        return self.new_balance - self.old_balance


class LedgerCommit(BaseModel):
    """All writes of one operation. Applied completely or not at all."""

    commit_id: UUID = Field(default_factory=uuid4)
    correlation_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    record_upserts: list[AnyRecord] = Field(default_factory=list)
    record_deletes: list[RecordRef] = Field(default_factory=list)
    fund_inserts: list[Fund] = Field(
        default_factory=list,
        description="New funds, e.g. created with an opening balance"
    )
    balance_changes: list[FundBalanceChange] = Field(default_factory=list)
    entries: list[LedgerEntry] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_entries_match_changes(self) -> 'LedgerCommit':
        changed = [change.fund_id for change in self.balance_changes]
        if len(changed) != len(set(changed)):
            raise ValueError("A fund may change at most once per commit")

        entry_totals: dict[UUID, Decimal] = {}
        for entry in self.entries:
            entry_totals[entry.fund_id] = (
                entry_totals.get(entry.fund_id, Decimal("0")) + entry.amount
            )

        expected = {change.fund_id: change.delta for change in self.balance_changes}
        # Opening balances of new funds are explained by entries too
        for fund in self.fund_inserts:
            if fund.current_balance != 0:
                expected[fund.id] = expected.get(fund.id, Decimal("0")) + fund.current_balance

        if entry_totals != {f: d for f, d in expected.items() if d != 0}:
            raise ValueError("Ledger entries must explain every balance change")
        return self

    @property
    def is_empty(self) -> bool:
        return not (
            self.record_upserts
            or self.record_deletes
            or self.fund_inserts
            or self.balance_changes
            or self.entries
        )

    @property
    def touched_fund_ids(self) -> list[UUID]:
        return [change.fund_id for change in self.balance_changes]
