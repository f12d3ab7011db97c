"""
Fund Models

A fund is a named bucket of money earmarked for a purpose
(Management, Mission, Building). Its balance is the running total
of every signed change ever applied to it.

DESIGN DECISION: Every fund row carries a version stamp.
Balance writes state the version they were computed from, and storage
refuses the write if the row has moved on since. This turns the
read-modify-write of a balance into a compare-and-swap.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Funds created on first start, mirroring the church's chart of funds
DEFAULT_FUNDS = (
    ("Management", "General management and operational expenses"),
    ("Mission", "Mission activities and outreach programs"),
    ("Building", "Building maintenance and construction projects"),
)


class Fund(BaseModel):
    """A named fund holding a running balance."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique fund ID"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Fund name, e.g. 'Mission'"
    )
    current_balance: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Running balance (may go negative through bills)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    version: int = Field(
        default=0,
        ge=0,
        description="Incremented on every balance write"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def matches_keyword(self, keyword: str) -> bool:
        """Case-insensitive substring match on the fund name."""
        return keyword.lower() in self.name.lower()


class FundTransfer(BaseModel):
    """
    Money moved from one fund to another.

    Not a financial record: it has no allocation of its own, only
    two ledger entries of equal size and opposite sign.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    from_fund_id: UUID
    to_fund_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    transfer_date: date = Field(default_factory=date.today)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_distinct_funds(self) -> 'FundTransfer':
        if self.from_fund_id == self.to_fund_id:
            raise ValueError("Cannot transfer to the same fund")
        return self
