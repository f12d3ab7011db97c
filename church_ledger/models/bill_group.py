"""
Bill Group Models

A bill group files related bills together ("Harvest festival 2024",
"Roof repair"), optionally split further into subgroups. Groups carry
defaults for the bills filed under them and an approval state.

DESIGN DECISION: Group totals are never stored.
A group's total is the sum of the bills filed under it, computed when
asked for, so it cannot drift from the bills themselves.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class BillGroupStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SubgroupStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BillGroup(BaseModel):
    """A container for related bills."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: BillGroupStatus = BillGroupStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: Optional[str] = Field(default=None, max_length=255)
    approved_at: Optional[datetime] = None
    default_due_date: Optional[date] = None
    default_fund_id: Optional[UUID] = Field(
        default=None,
        description="Fund for bills in this group that name none"
    )
    responsible_parties: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class BillSubgroup(BaseModel):
    """A subdivision of a bill group, e.g. one line of a project budget."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    purpose: Optional[str] = Field(default=None, max_length=500)
    status: SubgroupStatus = SubgroupStatus.ACTIVE
    priority: Priority = Priority.MEDIUM
    default_fund_id: Optional[UUID] = None
    default_due_date: Optional[date] = None
    allocation_percentage: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        decimal_places=2,
        description="Planned share of the group budget"
    )
    sort_order: int = 0
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SubgroupTotals(BaseModel):
    subgroup_id: UUID
    title: str
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    bill_count: int = 0


class BillGroupTotals(BaseModel):
    """Rolled-up amounts of the bills filed under one group."""

    group_id: UUID
    title: str
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    bill_count: int = 0
    subgroups: list[SubgroupTotals] = Field(default_factory=list)

    @property
    def unpaid_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount


class BillGroupDraft(BaseModel):
    """Bill group as submitted by a form. Enum values are kept as text."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    approval_status: Optional[str] = None
    default_due_date: Optional[date] = None
    default_fund_id: Optional[UUID] = None
    responsible_parties: Optional[list[str]] = None
    notes: Optional[str] = None


class BillSubgroupDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: Optional[UUID] = None
    title: Optional[str] = None
    purpose: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    default_fund_id: Optional[UUID] = None
    default_due_date: Optional[date] = None
    allocation_percentage: Optional[str] = None
    sort_order: Optional[int] = None
    notes: Optional[str] = None
