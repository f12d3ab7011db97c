"""
Two-Stage Validation Gate

Every submission passes through here before anything is written.

STAGE 1 - SCHEMA VALIDATION:
- Required field presence, with a message naming the field
- Amount parses as a finite number greater than zero
- Enum values (offering type, bill status, transaction type) are known

STAGE 2 - SEMANTIC VALIDATION:
- Future date and absurd amount detection (warnings)
- Date consistency
- Storage-backed checks: member and fund exist, source fund holds
  enough for a debit, repayment does not exceed what is outstanding

Stage 2 only runs if stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the flow decides whether to proceed.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

from church_ledger.config import AppSettings, get_settings
from church_ledger.models.bill_group import (
    ApprovalStatus,
    BillGroupDraft,
    BillGroupStatus,
    BillSubgroupDraft,
    Priority,
    SubgroupStatus,
)
from church_ledger.models.record import (
    Advance,
    AdvanceDraft,
    Bill,
    BillDraft,
    BillFrequency,
    BillStatus,
    FinancialRecord,
    OfferingDraft,
    OfferingType,
    PaymentMethod,
    RepaymentDraft,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransferDraft,
    ValidationIssue,
    ValidationResult,
)
from church_ledger.services.storage import (
    BillGroupStorageInterface,
    FundStorageInterface,
    MemberStorageInterface,
)


class RecordValidationError(Exception):
    """A submission failed validation. Carries the full result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("; ".join(result.error_messages) or "Validation failed")


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse a raw amount into a Decimal.

    Returns None unless the text is a finite number greater than zero.
    Thousands separators are accepted.
    """
    if raw is None:
        return None
    text = str(raw).replace(",", "").strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def _required(field: str, label: str) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type="missing",
        message=f"{label} is required",
        severity="error",
    )


def _error(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
        suggested_fix=fix,
    )


def _is_valid(issues: list[ValidationIssue]) -> bool:
    # Valid if no errors (warnings are okay)
    return not any(issue.severity == "error" for issue in issues)


def _too_precise(value: Decimal) -> bool:
    return value.normalize().as_tuple().exponent < -2


def _debit_after_edit(
    fund_id: UUID,
    new_effect: Decimal,
    existing: Optional[FinancialRecord],
) -> Optional[Decimal]:
    """
    How much more a fund loses once the record is stored with new_effect
    on it, compared to what the stored record already takes.

    None if the fund loses nothing more.
    """
    old_effect = Decimal("0")
    if existing is not None:
        old_effect = existing.balance_effect().get(fund_id, Decimal("0"))
    delta = new_effect - old_effect
    return -delta if delta < 0 else None


def _check_choice(
    field: str,
    label: str,
    value: Optional[str],
    choices: type,
    issues: list[ValidationIssue],
) -> None:
    if value and value not in {c.value for c in choices}:
        issues.append(_error(field, "invalid_value", f"Unknown {label}: {value}"))


class FinancialRecordValidator:
    """
    Validates submitted drafts through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (uses storage for existence and balance checks)
    """

    def __init__(
        self,
        fund_storage: Optional[FundStorageInterface] = None,
        member_storage: Optional[MemberStorageInterface] = None,
        settings: Optional[AppSettings] = None,
        group_storage: Optional[BillGroupStorageInterface] = None,
    ):
        """
        Initialize validator.

        Args:
            fund_storage: For fund existence and balance checks.
                          If None, those checks are skipped.
            member_storage: For member existence checks.
                            If None, that check is skipped.
            group_storage: For bill group and subgroup existence checks.
                           If None, those checks are skipped.
        """
        self._funds = fund_storage
        self._members = member_storage
        self._groups = group_storage
        self._settings = settings or get_settings().app

    # =========================================================================
    # Shared checks
    # =========================================================================

    def _check_amount(
        self,
        raw: Optional[str],
        issues: list[ValidationIssue],
        label: str = "Amount",
    ) -> Optional[Decimal]:
        if raw is None or not str(raw).strip():
            issues.append(_required("amount", label))
            return None

        amount = parse_amount(raw)
        if amount is None:
            issues.append(_error(
                "amount",
                "invalid_value",
                f"{label} must be a valid positive amount",
                "Enter a number greater than zero",
            ))
            return None

        if _too_precise(amount):
            issues.append(_error(
                "amount",
                "invalid_value",
                f"{label} cannot have more than 2 decimal places",
            ))
            return None

        return amount

    def _check_amount_sanity(self, amount: Decimal, issues: list[ValidationIssue]) -> None:
        max_amount = Decimal(str(self._settings.max_record_amount))
        if amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=(
                    f"Amount ({self._settings.format_amount(amount)}) "
                    "seems unusually high"
                ),
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

    def _check_future_date(
        self,
        field: str,
        label: str,
        value: Optional[date],
        issues: list[ValidationIssue],
    ) -> None:
        max_future_date = date.today() + timedelta(
            days=self._settings.future_date_tolerance_days
        )
        if value and value > max_future_date:
            issues.append(ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"{label} ({value}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

    async def _check_fund(
        self,
        field: str,
        fund_id: UUID,
        issues: list[ValidationIssue],
        debit: Optional[Decimal] = None,
        shortfall_message: Optional[str] = None,
    ) -> None:
        """Fund must exist; for a debit it must also hold enough."""
        if self._funds is None:
            return

        fund = await self._funds.get_fund(fund_id)
        if fund is None:
            issues.append(_error(field, "not_found", "Selected fund does not exist"))
            return

        if debit is not None and fund.current_balance < debit:
            issues.append(_error(
                field,
                "insufficient_balance",
                shortfall_message or (
                    f"Insufficient balance in {fund.name}: "
                    f"{self._settings.format_amount(fund.current_balance)} available"
                ),
                "Choose another fund or transfer money into this one first",
            ))

    async def _check_bill_group(
        self,
        group_id: Optional[UUID],
        subgroup_id: Optional[UUID],
        issues: list[ValidationIssue],
    ) -> None:
        """The group must exist and the subgroup must belong to it."""
        if self._groups is None:
            return

        if group_id is not None and await self._groups.get_group(group_id) is None:
            issues.append(_error("group_id", "not_found", "Selected bill group does not exist"))
            return

        if subgroup_id is not None:
            subgroup = await self._groups.get_subgroup(subgroup_id)
            if subgroup is None:
                issues.append(_error("subgroup_id", "not_found", "Selected subgroup does not exist"))
            elif subgroup.group_id != group_id:
                issues.append(_error(
                    "subgroup_id",
                    "inconsistent",
                    "Selected subgroup belongs to another bill group",
                ))

    def _result(
        self,
        subject: str,
        schema_issues: list[ValidationIssue],
        semantic_issues: Optional[list[ValidationIssue]],
    ) -> ValidationResult:
        schema_valid = _is_valid(schema_issues)
        semantic_valid = semantic_issues is not None and _is_valid(semantic_issues)
        all_issues = schema_issues + (semantic_issues or [])

        return ValidationResult(
            subject=subject,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    # =========================================================================
    # Offerings
    # =========================================================================

    async def validate_offering(self, draft: OfferingDraft) -> ValidationResult:
        """Run both stages for an offering."""
        issues = []

        if not draft.offering_type:
            issues.append(_required("offering_type", "Offering type"))
        elif draft.offering_type not in {t.value for t in OfferingType}:
            issues.append(_error(
                "offering_type",
                "invalid_value",
                f"Unknown offering type: {draft.offering_type}",
            ))

        amount = self._check_amount(draft.amount, issues)

        if draft.service_date is None:
            issues.append(_required("service_date", "Service date"))

        if draft.member_id is None and self._settings.require_offering_member:
            issues.append(_required("member_id", "Member"))

        if draft.contributors_count is not None and draft.contributors_count < 0:
            issues.append(_error(
                "contributors_count",
                "invalid_value",
                "Contributors count cannot be negative",
            ))

        if not _is_valid(issues):
            return self._result("offering", issues, None)

        semantic = []
        self._check_future_date("service_date", "Service date", draft.service_date, semantic)
        self._check_amount_sanity(amount, semantic)

        if draft.member_id is not None and self._members is not None:
            if await self._members.get_member(draft.member_id) is None:
                semantic.append(_error("member_id", "not_found", "Selected member does not exist"))

        return self._result("offering", issues, semantic)

    # =========================================================================
    # Bills
    # =========================================================================

    async def validate_bill(
        self,
        draft: BillDraft,
        existing: Optional[Bill] = None,
    ) -> ValidationResult:
        """
        Run both stages for a bill.

        Pass the stored bill when editing: a draft without a bill date
        keeps the stored one, and dates are checked against it.
        """
        issues = []

        if not draft.vendor_name:
            issues.append(_required("vendor_name", "Vendor name"))

        amount = self._check_amount(draft.amount, issues)

        if draft.due_date is None:
            issues.append(_required("due_date", "Due date"))

        if draft.frequency and draft.frequency not in {f.value for f in BillFrequency}:
            issues.append(_error(
                "frequency",
                "invalid_value",
                f"Unknown bill frequency: {draft.frequency}",
            ))

        if draft.status and draft.status not in {s.value for s in BillStatus}:
            issues.append(_error(
                "status",
                "invalid_value",
                f"Unknown bill status: {draft.status}",
            ))

        if draft.subgroup_id is not None and draft.group_id is None:
            issues.append(_required("group_id", "Bill group"))

        if not _is_valid(issues):
            return self._result("bill", issues, None)

        semantic = []
        if draft.bill_date is not None:
            bill_date = draft.bill_date
        elif existing is not None:
            bill_date = existing.record_date
        else:
            bill_date = date.today()
        self._check_future_date("bill_date", "Bill date", draft.bill_date, semantic)
        self._check_amount_sanity(amount, semantic)

        if draft.due_date < bill_date:
            semantic.append(ValidationIssue(
                field="due_date",
                issue_type="inconsistent",
                message="Due date is before bill date",
                severity="warning",
                suggested_fix="Please verify both dates",
            ))

        if draft.paid_date and draft.paid_date < bill_date:
            semantic.append(_error("paid_date", "inconsistent", "Paid date cannot be before bill date"))

        if draft.fund_id is not None:
            await self._check_fund("fund_id", draft.fund_id, semantic)

        await self._check_bill_group(draft.group_id, draft.subgroup_id, semantic)

        return self._result("bill", issues, semantic)

    # =========================================================================
    # Advances
    # =========================================================================

    async def validate_advance(
        self,
        draft: AdvanceDraft,
        existing: Optional[Advance] = None,
    ) -> ValidationResult:
        """
        Run both stages for an advance. The fund must cover it.

        When editing, pass the stored advance: only what the edit takes
        from the fund beyond what the advance already took must be covered.
        """
        issues = []

        if not draft.recipient_name:
            issues.append(_required("recipient_name", "Recipient name"))

        amount = self._check_amount(draft.amount, issues)

        if not draft.purpose:
            issues.append(_required("purpose", "Purpose"))

        if draft.fund_id is None:
            issues.append(_required("fund_id", "Fund"))

        if draft.advance_date is None:
            issues.append(_required("advance_date", "Advance date"))

        if not _is_valid(issues):
            return self._result("advance", issues, None)

        semantic = []
        self._check_future_date("advance_date", "Advance date", draft.advance_date, semantic)
        self._check_amount_sanity(amount, semantic)

        if draft.expected_return_date and draft.expected_return_date < draft.advance_date:
            semantic.append(_error(
                "expected_return_date",
                "inconsistent",
                "Expected return date cannot be before advance date",
            ))

        returned = existing.amount_returned if existing else Decimal("0")
        if amount < returned:
            semantic.append(_error(
                "amount",
                "below_returned",
                (
                    "Amount cannot be less than the "
                    f"{self._settings.format_amount(returned)} already returned"
                ),
            ))
            return self._result("advance", issues, semantic)

        debit = _debit_after_edit(draft.fund_id, -(amount - returned), existing)
        await self._check_fund("fund_id", draft.fund_id, semantic, debit=debit)

        return self._result("advance", issues, semantic)

    async def validate_repayment(
        self,
        draft: RepaymentDraft,
        advance: Advance,
    ) -> ValidationResult:
        """A repayment must be positive and at most what is still outstanding."""
        issues = []
        amount = self._check_amount(draft.amount, issues, label="Repayment amount")

        if not _is_valid(issues):
            return self._result("repayment", issues, None)

        semantic = []
        if amount > advance.outstanding_amount:
            semantic.append(_error(
                "amount",
                "exceeds_outstanding",
                (
                    "Repayment amount cannot exceed remaining balance of "
                    f"{self._settings.format_amount(advance.outstanding_amount)}"
                ),
            ))

        return self._result("repayment", issues, semantic)

    # =========================================================================
    # Manual transactions
    # =========================================================================

    async def validate_transaction(
        self,
        draft: TransactionDraft,
        existing: Optional[Transaction] = None,
    ) -> ValidationResult:
        """
        Run both stages for a manual income or expense.

        An expense must be covered by its fund. When editing, pass the
        stored transaction so only the extra debit has to be covered.
        """
        issues = []

        if not draft.transaction_type or not draft.amount or draft.fund_id is None:
            issues.append(_error(
                "transaction",
                "missing",
                "Type, amount, and fund_id are required",
            ))
            return self._result("transaction", issues, None)

        _check_choice(
            "transaction_type", "transaction type",
            draft.transaction_type, TransactionType, issues,
        )
        _check_choice(
            "payment_method", "payment method",
            draft.payment_method, PaymentMethod, issues,
        )

        amount = None
        try:
            raw = Decimal(str(draft.amount).replace(",", "").strip())
        except InvalidOperation:
            raw = None
        if raw is not None and raw.is_finite() and raw <= 0:
            issues.append(_error("amount", "invalid_value", "Amount must be greater than 0"))
        else:
            amount = self._check_amount(draft.amount, issues)

        if not _is_valid(issues):
            return self._result("transaction", issues, None)

        semantic = []
        self._check_future_date(
            "transaction_date", "Transaction date", draft.transaction_date, semantic
        )
        self._check_amount_sanity(amount, semantic)

        if draft.transaction_type == TransactionType.EXPENSE.value:
            new_effect = -amount
        else:
            new_effect = amount
        await self._check_fund(
            "fund_id",
            draft.fund_id,
            semantic,
            debit=_debit_after_edit(draft.fund_id, new_effect, existing),
            shortfall_message="Insufficient funds",
        )

        return self._result("transaction", issues, semantic)

    # =========================================================================
    # Bill groups
    # =========================================================================

    async def validate_bill_group(self, draft: BillGroupDraft) -> ValidationResult:
        """A group needs a title; its default fund, if any, must exist."""
        issues = []

        if not draft.title:
            issues.append(_required("title", "Title"))

        _check_choice("status", "group status", draft.status, BillGroupStatus, issues)
        _check_choice("priority", "priority", draft.priority, Priority, issues)
        _check_choice(
            "approval_status", "approval status",
            draft.approval_status, ApprovalStatus, issues,
        )

        if not _is_valid(issues):
            return self._result("bill_group", issues, None)

        semantic = []
        if draft.default_fund_id is not None:
            await self._check_fund("default_fund_id", draft.default_fund_id, semantic)

        return self._result("bill_group", issues, semantic)

    async def validate_bill_subgroup(self, draft: BillSubgroupDraft) -> ValidationResult:
        issues = []

        if draft.group_id is None or not draft.title:
            issues.append(_error(
                "subgroup",
                "missing",
                "Bill group and title are required",
            ))

        _check_choice("status", "subgroup status", draft.status, SubgroupStatus, issues)
        _check_choice("priority", "priority", draft.priority, Priority, issues)

        if draft.allocation_percentage is not None and str(draft.allocation_percentage).strip():
            try:
                share = Decimal(str(draft.allocation_percentage).strip())
            except InvalidOperation:
                share = None
            if share is None or not share.is_finite() or not 0 <= share <= 100:
                issues.append(_error(
                    "allocation_percentage",
                    "invalid_value",
                    "Allocation percentage must be between 0 and 100",
                ))
            elif _too_precise(share):
                issues.append(_error(
                    "allocation_percentage",
                    "invalid_value",
                    "Allocation percentage cannot have more than 2 decimal places",
                ))

        if not _is_valid(issues):
            return self._result("bill_subgroup", issues, None)

        semantic = []
        if self._groups is not None and await self._groups.get_group(draft.group_id) is None:
            semantic.append(_error("group_id", "not_found", "Selected bill group does not exist"))
        if draft.default_fund_id is not None:
            await self._check_fund("default_fund_id", draft.default_fund_id, semantic)

        return self._result("bill_subgroup", issues, semantic)

    # =========================================================================
    # Funds
    # =========================================================================

    async def validate_transfer(self, draft: TransferDraft) -> ValidationResult:
        """Both funds given and different, and the source holds the amount."""
        issues = []

        if draft.from_fund_id is None:
            issues.append(_required("from_fund_id", "Source fund"))
        if draft.to_fund_id is None:
            issues.append(_required("to_fund_id", "Destination fund"))

        amount = self._check_amount(draft.amount, issues)

        if (
            draft.from_fund_id is not None
            and draft.from_fund_id == draft.to_fund_id
        ):
            issues.append(_error(
                "to_fund_id",
                "same_fund",
                "Cannot transfer to the same fund",
                "Choose a different destination fund",
            ))

        if not _is_valid(issues):
            return self._result("transfer", issues, None)

        semantic = []
        self._check_amount_sanity(amount, semantic)
        await self._check_fund("from_fund_id", draft.from_fund_id, semantic, debit=amount)
        await self._check_fund("to_fund_id", draft.to_fund_id, semantic)

        return self._result("transfer", issues, semantic)

    async def validate_fund(
        self,
        name: Optional[str],
        opening_balance: Optional[str] = None,
        fund_id: Optional[UUID] = None,
    ) -> ValidationResult:
        """
        A fund needs a unique name. The opening balance, if given,
        may be zero but not negative.

        Pass fund_id when renaming so the fund doesn't clash with itself.
        """
        issues = []
        name = (name or "").strip()

        if not name:
            issues.append(_required("name", "Fund name"))

        if opening_balance is not None and str(opening_balance).strip():
            text = str(opening_balance).replace(",", "").strip()
            try:
                balance = Decimal(text)
            except InvalidOperation:
                balance = None
            if balance is None or not balance.is_finite() or balance < 0:
                issues.append(_error(
                    "opening_balance",
                    "invalid_value",
                    "Opening balance must be zero or a valid positive amount",
                ))
            elif _too_precise(balance):
                issues.append(_error(
                    "opening_balance",
                    "invalid_value",
                    "Opening balance cannot have more than 2 decimal places",
                ))

        if not _is_valid(issues):
            return self._result("fund", issues, None)

        semantic = []
        if self._funds is not None:
            for fund in await self._funds.list_funds():
                if fund.id != fund_id and fund.name.lower() == name.lower():
                    semantic.append(_error(
                        "name",
                        "duplicate",
                        f"A fund named '{fund.name}' already exists",
                    ))

        return self._result("fund", issues, semantic)

    # =========================================================================
    # Presentation
    # =========================================================================

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to the person filling in the form.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
