"""
Tests for Church Fund Ledger

Test strategy:
1. Unit tests for individual components (models, policy, validator)
2. Integration tests for flows against in-memory storage
3. No real Google Sheets calls in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from church_ledger.models.fund import Fund, FundTransfer
from church_ledger.models.ledger import (
    FundBalanceChange,
    LedgerCommit,
    LedgerEntry,
    LedgerEntrySource,
)
from church_ledger.models.record import (
    Advance,
    AdvanceStatus,
    Bill,
    BillStatus,
    Offering,
    OfferingDraft,
    OfferingType,
    RecordKind,
    ValidationIssue,
    ValidationResult,
)
from church_ledger.models.report import BalanceDiscrepancy, ReportRequest
from church_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestRecordModels:
    """Tests for offering, bill and advance models."""

    def test_offering_creation(self):
        """Test Offering model creation."""
        fund_id = uuid4()
        offering = Offering(
            offering_type=OfferingType.TITHE,
            amount=Decimal("250.00"),
            record_date=date(2024, 3, 3),
            allocation={fund_id: Decimal("250.00")},
        )
        assert offering.kind == RecordKind.OFFERING
        assert offering.record_type == "Tithe"
        assert offering.service_date == date(2024, 3, 3)
        assert offering.balance_effect() == {fund_id: Decimal("250.00")}

    def test_record_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        for amount in (Decimal("0"), Decimal("-5")):
            with pytest.raises(ValueError):
                Offering(
                    offering_type=OfferingType.TITHE,
                    amount=amount,
                    record_date=date(2024, 3, 3),
                )

    def test_allocation_must_sum_to_amount(self):
        """A partial allocation is never accepted."""
        with pytest.raises(ValueError, match="Allocation must sum to the record amount"):
            Offering(
                offering_type=OfferingType.TITHE,
                amount=Decimal("100.00"),
                record_date=date(2024, 3, 3),
                allocation={uuid4(): Decimal("60.00")},
            )

    def test_empty_allocation_allowed(self):
        """No matching fund means no allocation, not an error."""
        offering = Offering(
            offering_type=OfferingType.TITHE,
            amount=Decimal("100.00"),
            record_date=date(2024, 3, 3),
        )
        assert offering.allocation == {}
        assert offering.balance_effect() == {}

    def test_unpaid_bill_has_no_effect(self):
        """Only a paid bill has taken money out of its fund."""
        fund_id = uuid4()
        bill = Bill(
            vendor_name="Power Company",
            amount=Decimal("80.00"),
            record_date=date(2024, 3, 1),
            due_date=date(2024, 3, 15),
            allocation={fund_id: Decimal("80.00")},
        )
        assert bill.status == BillStatus.PENDING
        assert bill.balance_effect() == {}

        paid = bill.model_copy(update={"status": BillStatus.PAID})
        assert paid.balance_effect() == {fund_id: Decimal("-80.00")}

    def test_bill_paid_date_validation(self):
        """Test that paid date must be on or after bill date."""
        with pytest.raises(ValueError, match="Paid date cannot be before bill date"):
            Bill(
                vendor_name="Power Company",
                amount=Decimal("80.00"),
                record_date=date(2024, 3, 10),
                due_date=date(2024, 3, 15),
                status=BillStatus.PAID,
                paid_date=date(2024, 3, 1),
            )

    def test_advance_effect_is_outstanding_amount(self):
        """An advance debits only what has not come back yet."""
        fund_id = uuid4()
        advance = Advance(
            recipient_name="Pastor John",
            purpose="Youth camp",
            fund_id=fund_id,
            amount=Decimal("300.00"),
            record_date=date(2024, 3, 1),
            allocation={fund_id: Decimal("300.00")},
            amount_returned=Decimal("120.00"),
            status=AdvanceStatus.PARTIAL,
        )
        assert advance.outstanding_amount == Decimal("180.00")
        assert advance.balance_effect() == {fund_id: Decimal("-180.00")}

    def test_advance_returned_cannot_exceed_amount(self):
        with pytest.raises(ValueError, match="Amount returned cannot exceed the advance"):
            Advance(
                recipient_name="Pastor John",
                purpose="Youth camp",
                fund_id=uuid4(),
                amount=Decimal("300.00"),
                record_date=date(2024, 3, 1),
                amount_returned=Decimal("301.00"),
            )

    def test_draft_accepts_numeric_amount(self):
        """Form input may hand over numbers; drafts keep them as text."""
        draft = OfferingDraft(amount=150.5, offering_type="Tithe")
        assert draft.amount == "150.5"


class TestFundModels:
    """Tests for funds and transfers."""

    def test_fund_keyword_match_is_case_insensitive(self):
        fund = Fund(name="Mission Fund")
        assert fund.matches_keyword("mission")
        assert not fund.matches_keyword("building")

    def test_transfer_to_same_fund_rejected(self):
        fund_id = uuid4()
        with pytest.raises(ValueError, match="Cannot transfer to the same fund"):
            FundTransfer(
                from_fund_id=fund_id,
                to_fund_id=fund_id,
                amount=Decimal("10.00"),
                description="Loop",
            )


class TestLedgerModels:
    """Tests for ledger commits."""

    def test_zero_entry_rejected(self):
        with pytest.raises(ValueError, match="Ledger entries cannot be zero"):
            LedgerEntry(
                fund_id=uuid4(),
                amount=Decimal("0"),
                source=LedgerEntrySource.OFFERING,
                reference_id=uuid4(),
            )

    def test_commit_requires_entries_for_changes(self):
        """A balance change without its ledger entry is refused."""
        fund_id = uuid4()
        with pytest.raises(ValueError, match="Ledger entries must explain every balance change"):
            LedgerCommit(
                balance_changes=[FundBalanceChange(
                    fund_id=fund_id,
                    expected_version=0,
                    old_balance=Decimal("0"),
                    new_balance=Decimal("50.00"),
                )],
            )

    def test_commit_rejects_fund_changed_twice(self):
        fund_id = uuid4()
        change = FundBalanceChange(
            fund_id=fund_id,
            expected_version=0,
            old_balance=Decimal("0"),
            new_balance=Decimal("50.00"),
        )
        with pytest.raises(ValueError, match="A fund may change at most once per commit"):
            LedgerCommit(balance_changes=[change, change])

    def test_commit_with_matching_entries(self):
        fund_id = uuid4()
        commit = LedgerCommit(
            balance_changes=[FundBalanceChange(
                fund_id=fund_id,
                expected_version=3,
                old_balance=Decimal("10.00"),
                new_balance=Decimal("60.00"),
            )],
            entries=[LedgerEntry(
                fund_id=fund_id,
                amount=Decimal("50.00"),
                source=LedgerEntrySource.OFFERING,
                reference_id=uuid4(),
            )],
        )
        assert commit.touched_fund_ids == [fund_id]
        assert not commit.is_empty

    def test_opening_balance_needs_entry(self):
        fund = Fund(name="Mission", current_balance=Decimal("100.00"))
        with pytest.raises(ValueError):
            LedgerCommit(fund_inserts=[fund])


class TestReportModels:

    def test_report_request_date_range(self):
        with pytest.raises(ValueError):
            ReportRequest(
                report_type="totals_by_month",
                date_from=date(2024, 5, 1),
                date_to=date(2024, 4, 1),
            )

    def test_discrepancy_difference(self):
        discrepancy = BalanceDiscrepancy(
            fund_id=uuid4(),
            fund_name="Mission",
            recorded_balance=Decimal("120.00"),
            ledger_balance=Decimal("100.00"),
        )
        assert discrepancy.difference == Decimal("20.00")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.FUND_CREATED,
            severity=AuditSeverity.INFO,
            description="Fund created",
        )
        assert event.event_type == AuditEventType.FUND_CREATED
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            severity=AuditSeverity.INFO,
            description="Offering recorded",
            correlation_id=correlation_id,
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "record_created"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSFER_COMPLETED,
            severity=AuditSeverity.INFO,
            description="Transfer completed",
        )
        row = event.to_sheets_row()
        assert isinstance(row, list)
        assert "transfer_completed" in row

    def test_audit_event_builder_balances_reconciled(self):
        fund_id = uuid4()
        event = AuditEventBuilder.balances_reconciled(
            deltas={fund_id: Decimal("-40.00")},
            commit_id=uuid4(),
        )
        assert event.event_type == AuditEventType.BALANCES_RECONCILED
        assert event.details["deltas"][str(fund_id)] == "-40.00"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            subject="offering",
            schema_valid=False,
            semantic_valid=True,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert result.error_messages == ["Amount is required"]

    def test_validation_result_warnings_only(self):
        """Test result with only warnings."""
        result = ValidationResult(
            subject="bill",
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="due_date",
                    issue_type="unusual",
                    message="Due date is before bill date",
                    severity="warning",
                ),
            ],
            warnings=["Due date is before bill date"],
        )
        assert not result.has_errors
        assert result.error_count == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
