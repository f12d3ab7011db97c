"""
Core Record Models for Church Fund Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Carry the fund allocation together with the record it belongs to

DESIGN DECISION: Offerings, bills, advances and manual transactions
share one base model. Each knows its own allocation (which funds its
amount is split over) and its balance effect (the signed change it
imposes on those funds while it is live). The reconciliation engine
only ever looks at balance effects, so it treats every record kind
the same way.

Every stored record carries a version. Storage refuses a write whose
version does not follow the stored one, so an edit computed from a
record that has since been edited or deleted is never applied.

Raw form input arrives as *Draft models with every field optional.
Drafts are checked by the validation gate and only then turned into
records.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# Fund id -> amount. Amounts are positive; direction comes from the record.
Allocation = dict[UUID, Decimal]

CENT = Decimal("0.01")


def allocation_total(allocation: Allocation) -> Decimal:
    """Sum of all allocated amounts."""
    return sum(allocation.values(), Decimal("0"))


def negate(allocation: Allocation) -> Allocation:
    return {fund_id: -amount for fund_id, amount in allocation.items()}


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RecordKind(str, Enum):
    """Kinds of financial records that move money into or out of funds."""
    OFFERING = "offering"
    BILL = "bill"
    ADVANCE = "advance"
    TRANSACTION = "transaction"


class OfferingType(str, Enum):
    """Offering types collected at services."""
    TITHE = "Tithe"
    LORDS_DAY = "Lord's Day"
    OTHER = "Other Offering"
    SPECIAL = "Special Offering"
    MISSION = "Mission Fund Offering"
    BUILDING = "Building Fund Offering"


class BillStatus(str, Enum):
    """
    Bill payment status.

    Only a PAID bill has taken money out of its fund.
    """
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class BillFrequency(str, Enum):
    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class AdvanceStatus(str, Enum):
    """Repayment state of an advance."""
    OUTSTANDING = "outstanding"
    PARTIAL = "partial"
    RETURNED = "returned"


class TransactionType(str, Enum):
    """Direction of a manual transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"


# =============================================================================
# MEMBERS
# =============================================================================

class Member(BaseModel):
    """A church member who can be credited with offerings."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    fellowship_name: Optional[str] = Field(default=None, max_length=200)
    job: Optional[str] = Field(default=None, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None


# =============================================================================
# FINANCIAL RECORDS
# =============================================================================

class FinancialRecord(BaseModel):
    """
    Common shape of every record that moves money.

    INVARIANT: the allocation either sums to the record amount or is
    empty (no fund matched the routing rule). It is never partial.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Total amount of the record"
    )
    record_date: date = Field(
        ...,
        description="Service date, bill date or advance date"
    )
    allocation: Allocation = Field(
        default_factory=dict,
        description="Fund id -> allocated amount"
    )
    member_id: Optional[UUID] = Field(
        default=None,
        description="Member associated with this record, if any"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    version: int = Field(
        default=0,
        ge=0,
        description="0 when first stored, +1 on every stored edit"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('allocation')
    @classmethod
    def validate_allocation_amounts(cls, v: Allocation) -> Allocation:
        for fund_id, amount in v.items():
            if amount <= 0:
                raise ValueError(
                    f"Allocated amount for fund {fund_id} must be positive"
                )
        return v

    @model_validator(mode='after')
    def validate_allocation_total(self) -> 'FinancialRecord':
        if self.allocation and allocation_total(self.allocation) != self.amount:
            raise ValueError("Allocation must sum to the record amount")
        return self

    @property
    def record_type(self) -> str:
        """Type discriminator used for routing and reporting."""
        raise NotImplementedError

    def balance_effect(self) -> Allocation:
        """Signed per-fund change this record imposes while it exists."""
        return dict(self.allocation)


class Offering(FinancialRecord):
    """An offering received at a service. Always an inflow."""

    kind: Literal[RecordKind.OFFERING] = RecordKind.OFFERING
    offering_type: OfferingType
    contributors_count: Optional[int] = Field(default=None, ge=0)

    @property
    def record_type(self) -> str:
        return self.offering_type.value

    @property
    def service_date(self) -> date:
        return self.record_date


class Bill(FinancialRecord):
    """
    A bill owed to a vendor.

    Outflow, but only once it is paid: a pending or overdue bill
    has not touched any fund.
    """

    kind: Literal[RecordKind.BILL] = RecordKind.BILL
    vendor_name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(default="General", min_length=1, max_length=100)
    due_date: date
    frequency: BillFrequency = BillFrequency.ONE_TIME
    status: BillStatus = BillStatus.PENDING
    paid_date: Optional[date] = None
    fund_id: Optional[UUID] = Field(
        default=None,
        description="Fund the bill is paid from, if chosen explicitly"
    )
    document_path: Optional[str] = Field(
        default=None,
        description="Storage path of the scanned bill document"
    )
    group_id: Optional[UUID] = Field(
        default=None,
        description="Bill group this bill is filed under"
    )
    subgroup_id: Optional[UUID] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'Bill':
        if self.paid_date and self.paid_date < self.record_date:
            raise ValueError("Paid date cannot be before bill date")
        return self

    @property
    def record_type(self) -> str:
        return self.category

    @property
    def is_paid(self) -> bool:
        return self.status == BillStatus.PAID

    def balance_effect(self) -> Allocation:
        if not self.is_paid:
            return {}
        return negate(self.allocation)


class Advance(FinancialRecord):
    """
    Money advanced to a person from a fund, to be returned later.

    Outflow of whatever has not been returned yet.
    """

    kind: Literal[RecordKind.ADVANCE] = RecordKind.ADVANCE
    recipient_name: str = Field(..., min_length=1, max_length=200)
    purpose: str = Field(..., min_length=1, max_length=500)
    fund_id: UUID
    expected_return_date: Optional[date] = None
    amount_returned: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        decimal_places=2,
    )
    status: AdvanceStatus = AdvanceStatus.OUTSTANDING

    @model_validator(mode='after')
    def validate_repayment(self) -> 'Advance':
        if self.amount_returned > self.amount:
            raise ValueError("Amount returned cannot exceed the advance")
        if self.expected_return_date and self.expected_return_date < self.record_date:
            raise ValueError("Expected return date cannot be before advance date")
        return self

    @property
    def record_type(self) -> str:
        return "advance"

    @property
    def outstanding_amount(self) -> Decimal:
        return self.amount - self.amount_returned

    def balance_effect(self) -> Allocation:
        outstanding = self.outstanding_amount
        if outstanding == 0:
            return {}
        # Advances are single-fund, so this is exactly -outstanding
        return {
            fund_id: -(share * outstanding / self.amount).quantize(CENT)
            for fund_id, share in self.allocation.items()
        }


class Transaction(FinancialRecord):
    """
    A manual income or expense booked directly against one fund,
    for money that is neither an offering, a bill nor an advance.
    """

    kind: Literal[RecordKind.TRANSACTION] = RecordKind.TRANSACTION
    transaction_type: TransactionType
    description: str = Field(..., min_length=1, max_length=255)
    category: str = Field(default="General", min_length=1, max_length=100)
    payment_method: PaymentMethod = PaymentMethod.CASH
    fund_id: UUID
    receipt_number: Optional[str] = Field(default=None, max_length=50)

    @property
    def record_type(self) -> str:
        return self.category

    @property
    def is_expense(self) -> bool:
        return self.transaction_type == TransactionType.EXPENSE

    def balance_effect(self) -> Allocation:
        if self.is_expense:
            return negate(self.allocation)
        return dict(self.allocation)


AnyRecord = Annotated[
    Union[Offering, Bill, Advance, Transaction],
    Field(discriminator="kind"),
]

RECORD_MODELS: dict[RecordKind, type[FinancialRecord]] = {
    RecordKind.OFFERING: Offering,
    RecordKind.BILL: Bill,
    RecordKind.ADVANCE: Advance,
    RecordKind.TRANSACTION: Transaction,
}


class RecordRef(BaseModel):
    """Pointer to a stored record at the version it was read."""

    kind: RecordKind
    record_id: UUID
    expected_version: int = Field(default=0, ge=0)


# =============================================================================
# DRAFTS - raw, unvalidated form input
# =============================================================================

class Draft(BaseModel):
    """
    Base for submitted form input.

    CRITICAL: This is PROPOSED data, NOT verified.
    Every field is optional; the validation gate reports what is missing.
    Amounts are kept as text until the gate parses them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def amount_to_text(cls, v: Any) -> Any:
        """Accept numbers as well as text for raw amounts."""
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float, Decimal)):
            return str(v)
        return v


class OfferingDraft(Draft):
    """Offering as submitted by a form."""

    offering_type: Optional[str] = None
    service_date: Optional[date] = None
    member_id: Optional[UUID] = None
    contributors_count: Optional[int] = None


class BillDraft(Draft):
    """Bill as submitted by a form."""

    vendor_name: Optional[str] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    category: Optional[str] = None
    frequency: Optional[str] = None
    status: Optional[str] = None
    paid_date: Optional[date] = None
    fund_id: Optional[UUID] = None
    document_path: Optional[str] = None
    group_id: Optional[UUID] = None
    subgroup_id: Optional[UUID] = None


class AdvanceDraft(Draft):
    recipient_name: Optional[str] = None
    purpose: Optional[str] = None
    fund_id: Optional[UUID] = None
    advance_date: Optional[date] = None
    expected_return_date: Optional[date] = None


class RepaymentDraft(Draft):
    """Repayment of (part of) an advance."""

    repayment_date: Optional[date] = None


class TransferDraft(Draft):
    """Inter-fund transfer as submitted by a form. Notes hold the description."""

    from_fund_id: Optional[UUID] = None
    to_fund_id: Optional[UUID] = None
    transfer_date: Optional[date] = None


class TransactionDraft(Draft):
    """Manual income or expense as submitted by a form."""

    transaction_type: Optional[str] = None
    fund_id: Optional[UUID] = None
    description: Optional[str] = None
    category: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_date: Optional[date] = None
    receipt_number: Optional[str] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'insufficient_balance')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required fields, amount parsing)
    Stage 2: Semantic validation (dates, sanity, storage-backed checks)
    """

    subject: str = Field(
        ...,
        description="What was validated, e.g. 'offering' or 'transfer'"
    )
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)

    # Warnings don't block but should be shown
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def error_messages(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]
