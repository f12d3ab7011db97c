"""
Report Models

Reports are read-only views over stored funds, records and ledger entries.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from church_ledger.models.record import RecordKind


ReportType = Literal[
    "fund_summary",
    "totals_by_type",
    "totals_by_month",
    "member_contributions",
    "financial_report",
]


class ReportRequest(BaseModel):
    """A request for one report over an optional date range."""

    report_id: UUID = Field(default_factory=uuid4)
    report_type: ReportType
    kind: Optional[RecordKind] = Field(
        default=None,
        description="Record kind to aggregate (totals reports only)"
    )
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode='after')
    def validate_range(self) -> 'ReportRequest':
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from cannot be after date_to")
        return self


class ReportResult(BaseModel):
    """Result of generating a report."""

    report_id: UUID
    generated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    # Success/failure
    success: bool
    error_message: Optional[str] = None

    data_found: bool = Field(
        ...,
        description="Was any data found?"
    )
    result_count: int = Field(
        ge=0,
        description="Number of result rows"
    )
    results: list[dict] = Field(
        default_factory=list,
        description="Report rows as list of dicts"
    )
    aggregation_result: Optional[dict] = None

    description: str = Field(
        ...,
        description="Human-readable description of what was reported"
    )


class BalanceDiscrepancy(BaseModel):
    """A fund whose stored balance disagrees with its ledger."""

    fund_id: UUID
    fund_name: str
    recorded_balance: Decimal
    ledger_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.ledger_balance


class BalanceAuditResult(BaseModel):
    """Outcome of checking every fund balance against the ledger."""

    checked_at: datetime = Field(default_factory=datetime.utcnow)
    funds_checked: int = Field(..., ge=0)
    discrepancies: list[BalanceDiscrepancy] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies
