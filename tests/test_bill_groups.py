"""
Tests for bill groups and subgroups.

Groups hold no money. Bills filed under them still move balances the
usual way; the group only supplies a default fund and sums its bills.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from church_ledger.models.audit import AuditEventType
from church_ledger.models.bill_group import (
    ApprovalStatus,
    BillGroupDraft,
    BillGroupStatus,
    BillSubgroupDraft,
    Priority,
)
from church_ledger.models.record import BillDraft
from church_ledger.orchestrator import BillGroupFlow, BillGroupInUseError
from church_ledger.services.storage import NotFoundError
from church_ledger.validation import RecordValidationError


async def balances(storage):
    return {fund.name: fund.current_balance for fund in await storage.list_funds()}


def bill_draft(amount="80", **overrides):
    fields = dict(
        vendor_name="Hardware Store",
        amount=amount,
        bill_date=date.today(),
        due_date=date.today() + timedelta(days=14),
    )
    fields.update(overrides)
    return BillDraft(**fields)


class TestGroups:

    @pytest.mark.asyncio
    async def test_create_defaults(self, storage, bill_group_flow):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))

        assert group.status == BillGroupStatus.DRAFT
        assert group.priority == Priority.MEDIUM
        assert group.approval_status == ApprovalStatus.PENDING
        assert group.approved_by is None
        assert await storage.get_group(group.id) == group

        events = await storage.get_recent_events(limit=10)
        assert AuditEventType.BILL_GROUP_SAVED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_title_required(self, bill_group_flow):
        with pytest.raises(RecordValidationError) as exc_info:
            await bill_group_flow.create_group(BillGroupDraft(description="No title"))

        assert exc_info.value.result.error_messages == ["Title is required"]

    @pytest.mark.asyncio
    async def test_unknown_priority_rejected(self, bill_group_flow):
        with pytest.raises(RecordValidationError):
            await bill_group_flow.create_group(BillGroupDraft(title="Roof", priority="asap"))

    @pytest.mark.asyncio
    async def test_unknown_default_fund_rejected(self, bill_group_flow, funds):
        with pytest.raises(RecordValidationError) as exc_info:
            await bill_group_flow.create_group(BillGroupDraft(
                title="Roof repair", default_fund_id=uuid4(),
            ))

        assert exc_info.value.result.error_messages == ["Selected fund does not exist"]

    @pytest.mark.asyncio
    async def test_update_keeps_unset_fields(self, bill_group_flow, funds):
        group = await bill_group_flow.create_group(BillGroupDraft(
            title="Roof repair",
            description="Replace the vestry roof",
            default_fund_id=funds["Building"].id,
        ))

        updated = await bill_group_flow.update_group(
            group.id, BillGroupDraft(status="active", priority="high")
        )

        assert updated.title == "Roof repair"
        assert updated.description == "Replace the vestry roof"
        assert updated.default_fund_id == funds["Building"].id
        assert updated.status == BillGroupStatus.ACTIVE
        assert updated.priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_approval_stamps_and_clears(self, bill_group_flow):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))

        approved = await bill_group_flow.update_group(
            group.id,
            BillGroupDraft(approval_status="approved"),
            approved_by="Pastor John",
        )
        assert approved.approved_by == "Pastor John"
        assert approved.approved_at is not None

        # Re-approving keeps the original stamp
        again = await bill_group_flow.update_group(
            group.id,
            BillGroupDraft(approval_status="approved"),
            approved_by="Someone else",
        )
        assert again.approved_by == "Pastor John"
        assert again.approved_at == approved.approved_at

        rejected = await bill_group_flow.update_group(
            group.id, BillGroupDraft(approval_status="rejected")
        )
        assert rejected.approval_status == ApprovalStatus.REJECTED
        assert rejected.approved_by is None
        assert rejected.approved_at is None

    @pytest.mark.asyncio
    async def test_update_missing_group(self, bill_group_flow):
        with pytest.raises(NotFoundError):
            await bill_group_flow.update_group(uuid4(), BillGroupDraft(title="Gone"))

    @pytest.mark.asyncio
    async def test_list_filters(self, bill_group_flow):
        roof = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))
        await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))
        await bill_group_flow.update_group(
            roof.id, BillGroupDraft(approval_status="approved"), approved_by="Treasurer"
        )

        assert len(await bill_group_flow.list_groups()) == 2
        approved = await bill_group_flow.list_groups(approval_status=ApprovalStatus.APPROVED)
        assert [g.id for g in approved] == [roof.id]
        assert await bill_group_flow.list_groups(status=BillGroupStatus.ACTIVE) == []

    def test_needs_group_storage(self, flow_args):
        args = dict(flow_args, groups=None)
        with pytest.raises(ValueError):
            BillGroupFlow(**args)


class TestSubgroups:

    @pytest.mark.asyncio
    async def test_create_and_list_in_order(self, bill_group_flow):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))
        second = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Food", sort_order=2,
        ))
        first = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Decorations", sort_order=1, allocation_percentage="25.50",
        ))

        listed = await bill_group_flow.list_subgroups(group.id)
        assert [s.id for s in listed] == [first.id, second.id]
        assert first.allocation_percentage == Decimal("25.50")
        assert second.default_due_date == date.today()

    @pytest.mark.asyncio
    async def test_group_and_title_required(self, bill_group_flow):
        with pytest.raises(RecordValidationError) as exc_info:
            await bill_group_flow.create_subgroup(BillSubgroupDraft(title="Food"))

        assert exc_info.value.result.error_messages == ["Bill group and title are required"]

    @pytest.mark.asyncio
    async def test_unknown_group_rejected(self, bill_group_flow):
        with pytest.raises(RecordValidationError) as exc_info:
            await bill_group_flow.create_subgroup(BillSubgroupDraft(
                group_id=uuid4(), title="Food",
            ))

        assert exc_info.value.result.error_messages == ["Selected bill group does not exist"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("share, message", [
        ("150", "Allocation percentage must be between 0 and 100"),
        ("-1", "Allocation percentage must be between 0 and 100"),
        ("12.345", "Allocation percentage cannot have more than 2 decimal places"),
    ])
    async def test_bad_allocation_percentage(self, bill_group_flow, share, message):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))

        with pytest.raises(RecordValidationError) as exc_info:
            await bill_group_flow.create_subgroup(BillSubgroupDraft(
                group_id=group.id, title="Food", allocation_percentage=share,
            ))

        assert exc_info.value.result.error_messages == [message]

    @pytest.mark.asyncio
    async def test_update_keeps_group(self, bill_group_flow):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))
        other = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))
        food = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Food",
        ))

        updated = await bill_group_flow.update_subgroup(food.id, BillSubgroupDraft(
            group_id=other.id, purpose="Lunch after the service", status="completed",
        ))

        assert updated.group_id == group.id
        assert updated.title == "Food"
        assert updated.purpose == "Lunch after the service"


class TestGroupedBills:

    @pytest.mark.asyncio
    async def test_bill_takes_subgroup_then_group_fund(
        self, storage, bill_flow, bill_group_flow, funds
    ):
        group = await bill_group_flow.create_group(BillGroupDraft(
            title="Harvest festival", default_fund_id=funds["Mission"].id,
        ))
        food = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Food", default_fund_id=funds["Management"].id,
        ))
        decorations = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Decorations",
        ))

        catering = await bill_flow.record(bill_draft(
            group_id=group.id, subgroup_id=food.id, status="paid",
        ))
        flowers = await bill_flow.record(bill_draft(
            amount="20", group_id=group.id, subgroup_id=decorations.id, status="paid",
        ))

        assert catering.fund_id == funds["Management"].id
        assert flowers.fund_id == funds["Mission"].id
        after = await balances(storage)
        assert after["Management"] == Decimal("920.00")
        assert after["Mission"] == Decimal("480.00")

    @pytest.mark.asyncio
    async def test_explicit_fund_beats_group_default(self, bill_flow, bill_group_flow, funds):
        group = await bill_group_flow.create_group(BillGroupDraft(
            title="Harvest festival", default_fund_id=funds["Mission"].id,
        ))

        bill = await bill_flow.record(bill_draft(
            group_id=group.id, fund_id=funds["Building"].id,
        ))

        assert bill.fund_id == funds["Building"].id

    @pytest.mark.asyncio
    async def test_subgroup_of_another_group_rejected(self, bill_flow, bill_group_flow):
        harvest = await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))
        roof = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))
        tiles = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=roof.id, title="Tiles",
        ))

        with pytest.raises(RecordValidationError) as exc_info:
            await bill_flow.record(bill_draft(group_id=harvest.id, subgroup_id=tiles.id))

        assert exc_info.value.result.error_messages == [
            "Selected subgroup belongs to another bill group"
        ]

    @pytest.mark.asyncio
    async def test_totals(self, bill_flow, bill_group_flow, funds):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Harvest festival"))
        food = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Food",
        ))
        await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Decorations",
        ))

        await bill_flow.record(bill_draft("100", group_id=group.id, subgroup_id=food.id))
        await bill_flow.record(bill_draft(
            "50", group_id=group.id, subgroup_id=food.id, status="paid",
        ))
        await bill_flow.record(bill_draft("30", group_id=group.id))
        await bill_flow.record(bill_draft("999"))

        totals = await bill_group_flow.group_totals(group.id)

        assert totals.total_amount == Decimal("180")
        assert totals.paid_amount == Decimal("50")
        assert totals.unpaid_amount == Decimal("130")
        assert totals.bill_count == 3
        by_title = {sub.title: sub for sub in totals.subgroups}
        assert by_title["Food"].total_amount == Decimal("150")
        assert by_title["Food"].bill_count == 2
        assert by_title["Decorations"].bill_count == 0

    @pytest.mark.asyncio
    async def test_delete_refused_while_bills_filed(
        self, storage, bill_flow, bill_group_flow, funds
    ):
        group = await bill_group_flow.create_group(BillGroupDraft(title="Roof repair"))
        tiles = await bill_group_flow.create_subgroup(BillSubgroupDraft(
            group_id=group.id, title="Tiles",
        ))
        bill = await bill_flow.record(bill_draft(group_id=group.id, subgroup_id=tiles.id))

        with pytest.raises(BillGroupInUseError):
            await bill_group_flow.delete_subgroup(tiles.id)
        with pytest.raises(BillGroupInUseError):
            await bill_group_flow.delete_group(group.id)

        await bill_flow.delete(bill.id)
        await bill_group_flow.delete_group(group.id)

        assert await storage.get_group(group.id) is None
        assert await storage.get_subgroup(tiles.id) is None
        events = await storage.get_recent_events(limit=10)
        assert AuditEventType.BILL_GROUP_DELETED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_delete_missing_group(self, bill_group_flow):
        with pytest.raises(NotFoundError):
            await bill_group_flow.delete_group(uuid4())
