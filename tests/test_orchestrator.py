"""
Integration tests for the record and fund flows.

Flows run end to end against in-memory storage: validate, allocate,
reconcile, audit.
"""

import asyncio

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from church_ledger.allocation import AllocationPolicy
from church_ledger.audit import AuditLogger
from church_ledger.config import Settings
from church_ledger.models.audit import AuditEventType
from church_ledger.models.fund import Fund
from church_ledger.models.ledger import LedgerEntrySource
from church_ledger.models.record import (
    AdvanceDraft,
    AdvanceStatus,
    BillDraft,
    BillStatus,
    Member,
    OfferingDraft,
    RecordKind,
    RepaymentDraft,
    TransactionDraft,
    TransactionType,
    TransferDraft,
)
from church_ledger.models.report import ReportRequest
from church_ledger.orchestrator import (
    DuplicateSubmissionError,
    FundInUseError,
    OfferingFlow,
    create_app_components,
)
from church_ledger.reconciliation import BalanceReconciliationEngine
from church_ledger.services.storage import (
    ConnectionError as StorageConnectionError,
    InMemoryFinanceStorage,
    NotFoundError,
)
from church_ledger.validation import FinancialRecordValidator, RecordValidationError


async def balances(storage):
    return {fund.name: fund.current_balance for fund in await storage.list_funds()}


async def event_types(storage, correlation_id=None):
    if correlation_id is not None:
        events = await storage.get_events_by_correlation_id(correlation_id)
    else:
        events = await storage.get_recent_events(limit=1000)
    return [event.event_type for event in events]


def offering_draft(member, offering_type="Tithe", amount="500", **overrides):
    return OfferingDraft(
        offering_type=offering_type,
        amount=amount,
        service_date=overrides.pop("service_date", date.today()),
        member_id=member.id,
        **overrides,
    )


class TestOfferingFlow:
    """Offerings credit the fund their type routes to."""

    @pytest.mark.asyncio
    async def test_mission_offering_credits_mission(self, storage, offering_flow, funds, member):
        offering = await offering_flow.record(
            offering_draft(member, "Mission Fund Offering"),
        )

        assert offering.allocation == {funds["Mission"].id: Decimal("500")}
        assert await balances(storage) == {
            "Management": Decimal("1000.00"),
            "Mission": Decimal("1000.00"),
            "Building": Decimal("0"),
        }

    @pytest.mark.asyncio
    async def test_events_share_correlation_id(self, storage, offering_flow, funds, member):
        correlation_id = uuid4()
        await offering_flow.record(offering_draft(member), correlation_id=correlation_id)

        assert await event_types(storage, correlation_id) == [
            AuditEventType.BALANCES_RECONCILED,
            AuditEventType.RECORD_CREATED,
        ]

    @pytest.mark.asyncio
    async def test_changing_type_moves_money(self, storage, offering_flow, funds, member):
        offering = await offering_flow.record(offering_draft(member, "Tithe", "200"))

        edited = await offering_flow.edit(
            offering.id,
            offering_draft(member, "Building Fund Offering", "200"),
        )

        assert edited.id == offering.id
        assert edited.created_at == offering.created_at
        assert edited.allocation == {funds["Building"].id: Decimal("200")}
        after = await balances(storage)
        assert after["Management"] == Decimal("1000.00")
        assert after["Building"] == Decimal("200")

    @pytest.mark.asyncio
    async def test_delete_reverses(self, storage, offering_flow, funds, member):
        offering = await offering_flow.record(offering_draft(member, amount="125.50"))
        await offering_flow.delete(offering.id)

        assert (await balances(storage))["Management"] == Decimal("1000.00")
        assert await offering_flow.list_offerings() == []

    @pytest.mark.asyncio
    async def test_edit_missing_offering(self, offering_flow, funds, member):
        with pytest.raises(NotFoundError):
            await offering_flow.edit(uuid4(), offering_draft(member))

    @pytest.mark.asyncio
    async def test_validation_failure_is_audited(self, storage, offering_flow, funds, member):
        correlation_id = uuid4()
        with pytest.raises(RecordValidationError):
            await offering_flow.record(
                offering_draft(member, amount="-5"),
                correlation_id=correlation_id,
            )

        assert await event_types(storage, correlation_id) == [
            AuditEventType.SCHEMA_VALIDATION_FAILED,
        ]

    @pytest.mark.asyncio
    async def test_list_by_member(self, storage, offering_flow, funds, member):
        await offering_flow.record(offering_draft(member))
        assert len(await offering_flow.list_offerings(member_id=member.id)) == 1
        assert await offering_flow.list_offerings(member_id=uuid4()) == []


class TestBillFlow:
    """Bills debit their fund only while paid."""

    def draft(self, **overrides):
        fields = dict(
            vendor_name="Power Company",
            amount="80",
            bill_date=date.today(),
            due_date=date.today() + timedelta(days=10),
        )
        fields.update(overrides)
        return BillDraft(**fields)

    @pytest.mark.asyncio
    async def test_pending_bill_leaves_balances(self, storage, bill_flow, funds):
        bill = await bill_flow.record(self.draft())

        assert bill.status == BillStatus.PENDING
        assert bill.allocation == {funds["Management"].id: Decimal("80")}
        assert (await balances(storage))["Management"] == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_paid_bill_gets_paid_date(self, storage, bill_flow, funds):
        bill = await bill_flow.record(self.draft(status="paid"))

        assert bill.paid_date == date.today()
        assert (await balances(storage))["Management"] == Decimal("920.00")

    @pytest.mark.asyncio
    async def test_paid_bill_may_overdraw(self, storage, bill_flow, funds):
        """Bills are not balance-checked; the fund goes negative."""
        await bill_flow.record(self.draft(
            category="Building repairs", amount="150", status="paid",
        ))
        assert (await balances(storage))["Building"] == Decimal("-150")

    @pytest.mark.asyncio
    async def test_status_changes(self, storage, bill_flow, funds):
        bill = await bill_flow.record(self.draft())

        paid = await bill_flow.set_status(bill.id, BillStatus.PAID)
        assert paid.paid_date == date.today()
        assert (await balances(storage))["Management"] == Decimal("920.00")

        pending = await bill_flow.set_status(bill.id, BillStatus.PENDING)
        assert pending.paid_date is None
        assert (await balances(storage))["Management"] == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_explicit_fund_on_edit(self, storage, bill_flow, funds):
        bill = await bill_flow.record(self.draft(status="paid"))

        await bill_flow.edit(bill.id, self.draft(status="paid", fund_id=funds["Mission"].id))

        after = await balances(storage)
        assert after["Management"] == Decimal("1000.00")
        assert after["Mission"] == Decimal("420.00")

    @pytest.mark.asyncio
    async def test_delete_paid_bill_restores(self, storage, bill_flow, funds):
        bill = await bill_flow.record(self.draft(status="paid"))
        await bill_flow.delete(bill.id)

        assert (await balances(storage))["Management"] == Decimal("1000.00")
        assert await bill_flow.list_bills() == []

    @pytest.mark.asyncio
    async def test_edit_without_bill_date_keeps_stored_date(self, storage, bill_flow, funds):
        bill_date = date.today() - timedelta(days=30)
        bill = await bill_flow.record(self.draft(bill_date=bill_date))

        paid = await bill_flow.edit(bill.id, self.draft(
            bill_date=None,
            status="paid",
            paid_date=date.today() - timedelta(days=10),
        ))

        assert paid.record_date == bill_date
        assert paid.paid_date == date.today() - timedelta(days=10)
        assert (await balances(storage))["Management"] == Decimal("920.00")

    @pytest.mark.asyncio
    async def test_list_by_status(self, bill_flow, funds):
        await bill_flow.record(self.draft())
        await bill_flow.record(self.draft(status="paid"))

        assert len(await bill_flow.list_bills()) == 2
        assert len(await bill_flow.list_bills(status=BillStatus.PAID)) == 1


class TestAdvanceFlow:

    def draft(self, fund, amount="300"):
        return AdvanceDraft(
            recipient_name="Deacon Paul",
            purpose="Harvest festival",
            amount=amount,
            fund_id=fund.id,
            advance_date=date.today(),
        )

    @pytest.mark.asyncio
    async def test_issue_and_repay(self, storage, advance_flow, funds):
        management = funds["Management"]
        advance = await advance_flow.issue(self.draft(management))
        assert (await balances(storage))["Management"] == Decimal("700.00")

        advance = await advance_flow.record_repayment(advance.id, RepaymentDraft(amount="100"))
        assert advance.status == AdvanceStatus.PARTIAL
        assert advance.outstanding_amount == Decimal("200")
        assert (await balances(storage))["Management"] == Decimal("800.00")

        advance = await advance_flow.record_repayment(advance.id, RepaymentDraft(amount="200"))
        assert advance.status == AdvanceStatus.RETURNED
        assert (await balances(storage))["Management"] == Decimal("1000.00")

        entries = await storage.list_entries(reference_id=advance.id)
        assert [e.amount for e in entries] == [
            Decimal("-300"), Decimal("100"), Decimal("200"),
        ]
        assert all(e.source == LedgerEntrySource.ADVANCE for e in entries)

    @pytest.mark.asyncio
    async def test_over_repayment_rejected(self, storage, advance_flow, funds):
        advance = await advance_flow.issue(self.draft(funds["Management"]))

        with pytest.raises(RecordValidationError) as exc_info:
            await advance_flow.record_repayment(advance.id, RepaymentDraft(amount="301"))

        assert exc_info.value.result.error_messages == [
            "Repayment amount cannot exceed remaining balance of ৳300.00"
        ]
        assert (await balances(storage))["Management"] == Decimal("700.00")

    @pytest.mark.asyncio
    async def test_advance_beyond_balance_rejected(self, storage, advance_flow, funds):
        with pytest.raises(RecordValidationError):
            await advance_flow.issue(self.draft(funds["Mission"], amount="500.01"))

        assert (await balances(storage))["Mission"] == Decimal("500.00")
        assert await advance_flow.list_advances() == []

    @pytest.mark.asyncio
    async def test_delete_outstanding_advance(self, storage, advance_flow, funds):
        advance = await advance_flow.issue(self.draft(funds["Management"]))
        await advance_flow.record_repayment(advance.id, RepaymentDraft(amount="50"))

        await advance_flow.delete(advance.id)

        assert (await balances(storage))["Management"] == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_edit_moves_advance_to_another_fund(self, storage, advance_flow, funds):
        advance = await advance_flow.issue(self.draft(funds["Mission"]))
        assert (await balances(storage))["Mission"] == Decimal("200.00")

        moved = await advance_flow.edit(advance.id, self.draft(funds["Management"]))

        assert moved.fund_id == funds["Management"].id
        assert moved.version == 1
        after = await balances(storage)
        assert after["Mission"] == Decimal("500.00")
        assert after["Management"] == Decimal("700.00")

    @pytest.mark.asyncio
    async def test_edit_into_fund_that_cannot_cover_rejected(self, storage, advance_flow, funds):
        """Mission to Building: Building is empty, so nothing moves."""
        advance = await advance_flow.issue(self.draft(funds["Mission"]))
        before = await balances(storage)

        with pytest.raises(RecordValidationError) as exc_info:
            await advance_flow.edit(advance.id, self.draft(funds["Building"]))

        assert exc_info.value.result.error_messages[0].startswith(
            "Insufficient balance in Building"
        )
        assert await balances(storage) == before
        stored = await storage.get_record(RecordKind.ADVANCE, advance.id)
        assert stored.fund_id == funds["Mission"].id
        assert stored.version == 0

    @pytest.mark.asyncio
    async def test_edit_keeps_repayments(self, storage, advance_flow, funds):
        advance = await advance_flow.issue(self.draft(funds["Management"]))
        await advance_flow.record_repayment(advance.id, RepaymentDraft(amount="100"))
        assert (await balances(storage))["Management"] == Decimal("800.00")

        edited = await advance_flow.edit(advance.id, self.draft(funds["Management"], amount="400"))

        assert edited.amount_returned == Decimal("100")
        assert edited.outstanding_amount == Decimal("300")
        assert edited.status == AdvanceStatus.PARTIAL
        assert (await balances(storage))["Management"] == Decimal("700.00")

    @pytest.mark.asyncio
    async def test_edit_without_advance_date_rejected(self, storage, advance_flow, funds):
        advance = await advance_flow.issue(self.draft(funds["Management"]))
        draft = self.draft(funds["Management"]).model_copy(update={"advance_date": None})

        with pytest.raises(RecordValidationError) as exc_info:
            await advance_flow.edit(advance.id, draft)

        assert "Advance date is required" in exc_info.value.result.error_messages

    @pytest.mark.asyncio
    async def test_list_by_status(self, advance_flow, funds):
        first = await advance_flow.issue(self.draft(funds["Management"], amount="10"))
        await advance_flow.issue(self.draft(funds["Management"], amount="20"))
        await advance_flow.record_repayment(first.id, RepaymentDraft(amount="10"))

        returned = await advance_flow.list_advances(status=AdvanceStatus.RETURNED)
        assert [a.id for a in returned] == [first.id]


class TestTransactionFlow:
    """Manual income and expenses."""

    def draft(self, fund, transaction_type="expense", amount="100", **overrides):
        fields = dict(
            transaction_type=transaction_type,
            amount=amount,
            fund_id=fund.id,
            category="Hall rental",
            transaction_date=date.today(),
        )
        fields.update(overrides)
        return TransactionDraft(**fields)

    @pytest.mark.asyncio
    async def test_expense_debits_fund(self, storage, transaction_flow, funds):
        expense = await transaction_flow.record(self.draft(funds["Mission"]))

        assert expense.transaction_type == TransactionType.EXPENSE
        assert expense.description == "Expense: Hall rental"
        assert (await balances(storage))["Mission"] == Decimal("400.00")

        entries = await storage.list_entries(reference_id=expense.id)
        assert [e.amount for e in entries] == [Decimal("-100")]
        assert entries[0].source == LedgerEntrySource.TRANSACTION

    @pytest.mark.asyncio
    async def test_income_credits_fund(self, storage, transaction_flow, funds):
        await transaction_flow.record(self.draft(funds["Building"], "income", "250"))

        assert (await balances(storage))["Building"] == Decimal("250")

    @pytest.mark.asyncio
    async def test_expense_beyond_balance_writes_nothing(self, storage, transaction_flow, funds):
        building = funds["Building"]
        before = await balances(storage)
        entries_before = len(await storage.list_entries())

        with pytest.raises(RecordValidationError) as exc_info:
            await transaction_flow.record(self.draft(building, amount="50"))

        assert exc_info.value.result.error_messages == ["Insufficient funds"]
        assert await balances(storage) == before
        assert len(await storage.list_entries()) == entries_before
        assert await transaction_flow.list_transactions() == []
        assert AuditEventType.SEMANTIC_VALIDATION_FAILED in await event_types(storage)

    @pytest.mark.asyncio
    async def test_expense_of_whole_balance_allowed(self, storage, transaction_flow, funds):
        await transaction_flow.record(self.draft(funds["Mission"], amount="500"))

        assert (await balances(storage))["Mission"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, transaction_flow, funds):
        with pytest.raises(RecordValidationError) as exc_info:
            await transaction_flow.record(TransactionDraft(amount="10"))

        assert exc_info.value.result.error_messages == [
            "Type, amount, and fund_id are required"
        ]

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, transaction_flow, funds):
        with pytest.raises(RecordValidationError) as exc_info:
            await transaction_flow.record(self.draft(funds["Mission"], amount="0"))

        assert exc_info.value.result.error_messages == ["Amount must be greater than 0"]

    @pytest.mark.asyncio
    async def test_edit_checks_only_extra_debit(self, storage, transaction_flow, funds):
        mission = funds["Mission"]
        expense = await transaction_flow.record(self.draft(mission))

        expense = await transaction_flow.edit(expense.id, self.draft(mission, amount="450"))
        assert (await balances(storage))["Mission"] == Decimal("50.00")

        with pytest.raises(RecordValidationError):
            await transaction_flow.edit(expense.id, self.draft(mission, amount="600"))

        assert (await balances(storage))["Mission"] == Decimal("50.00")
        stored = await storage.get_record(RecordKind.TRANSACTION, expense.id)
        assert stored.amount == Decimal("450")

    @pytest.mark.asyncio
    async def test_edit_expense_into_income(self, storage, transaction_flow, funds):
        management = funds["Management"]
        expense = await transaction_flow.record(self.draft(management))

        await transaction_flow.edit(expense.id, self.draft(management, "income"))

        assert (await balances(storage))["Management"] == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_delete_reverses(self, storage, transaction_flow, funds):
        expense = await transaction_flow.record(self.draft(funds["Mission"]))
        await transaction_flow.delete(expense.id)

        assert (await balances(storage))["Mission"] == Decimal("500.00")
        assert await transaction_flow.list_transactions() == []

    @pytest.mark.asyncio
    async def test_list_filters(self, transaction_flow, funds):
        await transaction_flow.record(self.draft(funds["Mission"]))
        await transaction_flow.record(self.draft(funds["Management"], "income"))

        assert len(await transaction_flow.list_transactions()) == 2
        incomes = await transaction_flow.list_transactions(
            transaction_type=TransactionType.INCOME
        )
        assert [t.fund_id for t in incomes] == [funds["Management"].id]
        in_mission = await transaction_flow.list_transactions(fund_id=funds["Mission"].id)
        assert len(in_mission) == 1


class TestFundFlow:
    """Fund lifecycle and transfers."""

    @pytest.mark.asyncio
    async def test_seed_default_funds_once(self, storage, fund_flow):
        created = await fund_flow.seed_default_funds()
        assert [f.name for f in created] == ["Management", "Mission", "Building"]

        assert await fund_flow.seed_default_funds() == []
        assert len(await fund_flow.list_funds()) == 3

    @pytest.mark.asyncio
    async def test_create_with_opening_balance(self, storage, fund_flow):
        fund = await fund_flow.create_fund("Youth", "Youth ministry", "1,250.00")

        stored = await storage.get_fund(fund.id)
        assert stored.current_balance == Decimal("1250.00")
        entries = await storage.list_entries(fund_id=fund.id)
        assert [e.source for e in entries] == [LedgerEntrySource.OPENING_BALANCE]

    @pytest.mark.asyncio
    async def test_opening_balance_with_fractional_paisa_rejected(self, storage, fund_flow):
        with pytest.raises(RecordValidationError) as exc_info:
            await fund_flow.create_fund("Youth", opening_balance="10.005")

        assert exc_info.value.result.error_messages == [
            "Opening balance cannot have more than 2 decimal places"
        ]
        assert await fund_flow.list_funds() == []

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, fund_flow, funds):
        with pytest.raises(RecordValidationError):
            await fund_flow.create_fund("MISSION")

    @pytest.mark.asyncio
    async def test_rename(self, storage, fund_flow, funds):
        updated = await fund_flow.update_fund(
            funds["Building"].id, name="Building Project", description="New hall"
        )
        assert updated.name == "Building Project"
        assert updated.current_balance == Decimal("0")

        with pytest.raises(RecordValidationError):
            await fund_flow.update_fund(funds["Mission"].id, name="building project")

    @pytest.mark.asyncio
    async def test_delete_unused_fund(self, storage, fund_flow, funds):
        await fund_flow.delete_fund(funds["Building"].id)
        assert [f.name for f in await fund_flow.list_funds()] == ["Management", "Mission"]

    @pytest.mark.asyncio
    async def test_delete_fund_with_transactions_refused(self, fund_flow, funds):
        with pytest.raises(FundInUseError, match="Cannot delete fund with existing transactions"):
            await fund_flow.delete_fund(funds["Mission"].id)

    @pytest.mark.asyncio
    async def test_delete_fund_referenced_by_pending_bill_refused(
        self, bill_flow, fund_flow, funds
    ):
        await bill_flow.record(BillDraft(
            vendor_name="Builder",
            amount="90",
            category="Building repairs",
            due_date=date.today(),
        ))
        with pytest.raises(FundInUseError):
            await fund_flow.delete_fund(funds["Building"].id)

    @pytest.mark.asyncio
    async def test_delete_missing_fund(self, fund_flow):
        with pytest.raises(NotFoundError):
            await fund_flow.delete_fund(uuid4())

    @pytest.mark.asyncio
    async def test_transfer(self, storage, fund_flow, funds):
        transfer = await fund_flow.transfer(TransferDraft(
            from_fund_id=funds["Management"].id,
            to_fund_id=funds["Building"].id,
            amount="250",
            notes="Roof appeal",
        ))

        assert transfer.description == "Roof appeal"
        after = await balances(storage)
        assert after["Management"] == Decimal("750.00")
        assert after["Building"] == Decimal("250")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source, destination, amount", [
        ("Mission", "Mission", "10"),
        ("Building", "Mission", "10"),
        ("Mission", "Building", "0"),
    ])
    async def test_rejected_transfer_writes_nothing(
        self, storage, fund_flow, funds, source, destination, amount
    ):
        before = await balances(storage)
        commits = storage.commit_count

        with pytest.raises(RecordValidationError):
            await fund_flow.transfer(TransferDraft(
                from_fund_id=funds[source].id,
                to_fund_id=funds[destination].id,
                amount=amount,
            ))

        assert await balances(storage) == before
        assert storage.commit_count == commits


class TestSubmissionGuard:
    """Double submissions are rejected; work on one record is serialised."""

    @pytest.mark.asyncio
    async def test_duplicate_in_flight_rejected(self, storage, guard, offering_flow, funds, member):
        async with guard.submission("form-1"):
            assert guard.is_in_flight("form-1")
            with pytest.raises(DuplicateSubmissionError):
                await offering_flow.record(offering_draft(member), submission_key="form-1")

        assert not guard.is_in_flight("form-1")
        assert await offering_flow.list_offerings() == []
        assert AuditEventType.DUPLICATE_SUBMISSION_REJECTED in await event_types(storage)

    @pytest.mark.asyncio
    async def test_key_released_after_failure(self, guard, offering_flow, funds, member):
        with pytest.raises(RecordValidationError):
            await offering_flow.record(
                offering_draft(member, amount="0"), submission_key="form-2"
            )

        assert not guard.is_in_flight("form-2")
        await offering_flow.record(offering_draft(member), submission_key="form-2")

    @pytest.mark.asyncio
    async def test_record_lock_serialises(self, guard):
        record_id = uuid4()
        order = []

        async def worker(name):
            async with guard.record(record_id):
                order.append(f"{name} start")
                await asyncio.sleep(0)
                order.append(f"{name} end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a start", "a end", "b start", "b end"]


class UnreachableStorage(InMemoryFinanceStorage):
    """Reads work, every ledger commit fails to reach the backend."""

    async def commit(self, commit):
        if commit.fund_inserts:
            return await super().commit(commit)
        raise StorageConnectionError("Sheets API unavailable")


class TestStorageFailures:
    """Failures are audited and re-raised, never swallowed."""

    @pytest.mark.asyncio
    async def test_unreachable_storage_is_audited(self, ledger_settings, app_settings):
        storage = UnreachableStorage()
        audit_logger = AuditLogger(storage)
        engine = BalanceReconciliationEngine(storage, storage, ledger_settings, audit_logger)
        management = Fund(name="Management", current_balance=Decimal("10.00"))
        await engine.open_fund(management)
        member = Member(name="Rina Gomes")
        await storage.save_member(member)
        flow = OfferingFlow(
            funds=storage,
            records=storage,
            ledger=storage,
            members=storage,
            engine=engine,
            validator=FinancialRecordValidator(storage, storage, app_settings),
            policy=AllocationPolicy(ledger_settings),
            audit_logger=audit_logger,
        )
        correlation_id = uuid4()

        with pytest.raises(StorageConnectionError):
            await flow.record(offering_draft(member), correlation_id=correlation_id)

        assert await event_types(storage, correlation_id) == [
            AuditEventType.EXTERNAL_SERVICE_ERROR,
        ]
        assert (await storage.get_fund(management.id)).current_balance == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_events_by_record(self, storage, offering_flow, funds, member):
        offering = await offering_flow.record(offering_draft(member))
        await offering_flow.delete(offering.id)

        events = await storage.get_events_by_entity("offering", offering.id)
        assert [e.event_type for e in events] == [
            AuditEventType.RECORD_CREATED,
            AuditEventType.RECORD_DELETED,
        ]


class TestMemberFlow:

    @pytest.mark.asyncio
    async def test_add_and_search(self):
        components = create_app_components(use_storage=False)
        await components.members.add_member("Rina Gomes", phone="0170000000")
        await components.members.add_member("Arun Das")

        assert [m.name for m in await components.members.search("rina")] == ["Rina Gomes"]
        assert len(await components.members.search()) == 2


class TestAppComponents:

    @pytest.mark.asyncio
    async def test_unconfigured_storage_falls_back_to_memory(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        components = create_app_components(use_storage=True, settings=Settings())

        assert components.sheets_client is None

    @pytest.mark.asyncio
    async def test_end_to_end_ledger_stays_consistent(self):
        components = create_app_components(use_storage=False)
        funds = {f.name: f for f in await components.funds.seed_default_funds()}
        member = await components.members.add_member("Rina Gomes")

        await components.offerings.record(offering_draft(member, "Tithe", "900"))
        await components.offerings.record(offering_draft(member, "Mission Fund Offering", "300"))
        bill = await components.bills.record(BillDraft(
            vendor_name="Power Company",
            amount="120",
            due_date=date.today(),
            status="paid",
        ))
        advance = await components.advances.issue(AdvanceDraft(
            recipient_name="Deacon Paul",
            purpose="Choir robes",
            amount="100",
            fund_id=funds["Mission"].id,
            advance_date=date.today(),
        ))
        await components.advances.record_repayment(advance.id, RepaymentDraft(amount="40"))
        await components.funds.transfer(TransferDraft(
            from_fund_id=funds["Management"].id,
            to_fund_id=funds["Building"].id,
            amount="200",
        ))
        await components.bills.delete(bill.id)

        summary = await components.reports.generate(ReportRequest(report_type="fund_summary"))
        by_name = {row["name"]: row["current_balance"] for row in summary.results}
        assert by_name == {
            "Management": Decimal("700"),
            "Mission": Decimal("240"),
            "Building": Decimal("200"),
        }

        audit = await components.reports.verify_fund_balances()
        assert audit.is_consistent
        assert audit.funds_checked == 3

        offerings = await components.offerings.list_offerings()
        assert {o.kind for o in offerings} == {RecordKind.OFFERING}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
