"""
Report Generation

DESIGN DECISION: Reports are DETERMINISTIC and read-only.
They aggregate what storage holds and never write. Every figure can be
traced back to stored records or ledger entries.

The balance audit is the one report that checks rather than summarises:
it compares each fund's stored balance with the sum of its ledger
entries. Any difference means a balance was written without the entry
that explains it.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from church_ledger.audit import AuditLogger
from church_ledger.models.fund import Fund
from church_ledger.models.record import (
    Advance,
    Bill,
    FinancialRecord,
    RecordKind,
    Transaction,
)
from church_ledger.models.report import (
    BalanceAuditResult,
    BalanceDiscrepancy,
    ReportRequest,
    ReportResult,
)
from church_ledger.services.storage import (
    FundStorageInterface,
    LedgerStorageInterface,
    MemberStorageInterface,
    RecordStorageInterface,
)


ZERO = Decimal("0")


class ReportGenerator:
    """
    Builds read-only reports over funds, records and the ledger.

    GUARANTEES:
    - Only returns real data from storage
    - Never estimates
    - Clear "no data found" if nothing matches
    """

    def __init__(
        self,
        funds: FundStorageInterface,
        records: RecordStorageInterface,
        members: MemberStorageInterface,
        ledger: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._funds = funds
        self._records = records
        self._members = members
        self._ledger = ledger
        self._audit = audit_logger or AuditLogger()

    async def generate(self, request: ReportRequest) -> ReportResult:
        """
        Generate the requested report.

        Failures are returned as an unsuccessful result, not raised.
        """
        handlers = {
            "fund_summary": self.fund_summary,
            "totals_by_type": self.totals_by_type,
            "totals_by_month": self.totals_by_month,
            "member_contributions": self.member_contributions,
            "financial_report": self.financial_report,
        }
        try:
            result = await handlers[request.report_type](request)
        except Exception as e:
            await self._audit.log_error(
                error_type="report_failed",
                error_message=str(e),
                details={"report_type": request.report_type},
            )
            return ReportResult(
                report_id=request.report_id,
                success=False,
                error_message=str(e),
                data_found=False,
                result_count=0,
                description=f"Report failed: {e}",
            )

        await self._audit.log_report_generated(
            report_type=request.report_type,
            result_count=result.result_count,
        )
        return result

    # =========================================================================
    # Fund reports
    # =========================================================================

    async def fund_summary(self, request: ReportRequest) -> ReportResult:
        """Current balance of every fund, with total, highest and lowest."""
        funds = await self._funds.list_funds()
        results = [self._fund_to_dict(fund) for fund in funds]

        if not funds:
            return ReportResult(
                report_id=request.report_id,
                success=True,
                data_found=False,
                result_count=0,
                description="No funds found",
            )

        highest = max(funds, key=lambda f: f.current_balance)
        lowest = min(funds, key=lambda f: f.current_balance)

        return ReportResult(
            report_id=request.report_id,
            success=True,
            data_found=True,
            result_count=len(results),
            results=results,
            aggregation_result={
                "total_balance": sum((f.current_balance for f in funds), ZERO),
                "fund_count": len(funds),
                "highest_fund": highest.name,
                "lowest_fund": lowest.name,
            },
            description="Fund balances",
        )

    async def verify_fund_balances(self) -> BalanceAuditResult:
        """Compare each fund's balance with the sum of its ledger entries."""
        funds = await self._funds.list_funds()
        ledger_totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for entry in await self._ledger.list_entries():
            ledger_totals[entry.fund_id] += entry.amount

        discrepancies = [
            BalanceDiscrepancy(
                fund_id=fund.id,
                fund_name=fund.name,
                recorded_balance=fund.current_balance,
                ledger_balance=ledger_totals[fund.id],
            )
            for fund in funds
            if fund.current_balance != ledger_totals[fund.id]
        ]

        result = BalanceAuditResult(funds_checked=len(funds), discrepancies=discrepancies)
        if not result.is_consistent:
            await self._audit.log_balance_audit_failed(
                {d.fund_id: d.difference for d in discrepancies}
            )
        return result

    # =========================================================================
    # Record totals
    # =========================================================================

    async def totals_by_type(self, request: ReportRequest) -> ReportResult:
        """Total and count per offering type or bill category."""
        kind = request.kind or RecordKind.OFFERING
        records = await self._list(kind, request)
        groups = self._group(records, lambda r: r.record_type)
        return self._grouped_result(request, kind, records, groups, "type")

    async def totals_by_month(self, request: ReportRequest) -> ReportResult:
        """Total and count per calendar month, oldest first."""
        kind = request.kind or RecordKind.OFFERING
        records = await self._list(kind, request)
        groups = self._group(records, lambda r: r.record_date.strftime("%Y-%m"))
        return self._grouped_result(request, kind, records, groups, "month")

    async def member_contributions(self, request: ReportRequest) -> ReportResult:
        """Offering totals per member, largest giver first."""
        offerings = await self._list(RecordKind.OFFERING, request)
        by_member: dict[UUID, list[FinancialRecord]] = defaultdict(list)
        for offering in offerings:
            if offering.member_id is not None:
                by_member[offering.member_id].append(offering)

        results = []
        for member_id, given in by_member.items():
            member = await self._members.get_member(member_id)
            results.append({
                "member_id": str(member_id),
                "member_name": member.name if member else "Unknown member",
                "fellowship_name": member.fellowship_name if member else None,
                "total_amount": sum((o.amount for o in given), ZERO),
                "offering_count": len(given),
                "last_offering_date": max(o.record_date for o in given).isoformat(),
            })
        results.sort(key=lambda row: row["total_amount"], reverse=True)

        return ReportResult(
            report_id=request.report_id,
            success=True,
            data_found=bool(results),
            result_count=len(results),
            results=results,
            aggregation_result={
                "total_amount": sum((row["total_amount"] for row in results), ZERO),
                "member_count": len(results),
            },
            description=self._describe("Member contributions", request),
        )

    async def financial_report(self, request: ReportRequest) -> ReportResult:
        """
        Income and expenses over a period.

        Income is offerings. Expenses are paid bills. Manual income and
        expense transactions are reported on their own lines. Advances
        count against the period only for the part not yet returned.
        """
        offerings = await self._list(RecordKind.OFFERING, request)
        bills = [
            bill for bill in await self._records.list_records(RecordKind.BILL)
            if isinstance(bill, Bill)
            and bill.is_paid
            and self._in_range(bill.paid_date or bill.record_date, request)
        ]
        advances = [
            a for a in await self._list(RecordKind.ADVANCE, request)
            if isinstance(a, Advance)
        ]
        transactions = [
            t for t in await self._list(RecordKind.TRANSACTION, request)
            if isinstance(t, Transaction)
        ]

        income = sum((o.amount for o in offerings), ZERO)
        expenses = sum((b.amount for b in bills), ZERO)
        advances_issued = sum((a.amount for a in advances), ZERO)
        advances_returned = sum((a.amount_returned for a in advances), ZERO)
        advances_outstanding = advances_issued - advances_returned
        other_income = sum((t.amount for t in transactions if not t.is_expense), ZERO)
        other_expenses = sum((t.amount for t in transactions if t.is_expense), ZERO)

        funds = await self._funds.list_funds()

        return ReportResult(
            report_id=request.report_id,
            success=True,
            data_found=bool(offerings or bills or advances or transactions),
            result_count=len(funds),
            results=[self._fund_to_dict(fund) for fund in funds],
            aggregation_result={
                "income": income,
                "income_by_type": {
                    key: values["total_amount"]
                    for key, values in self._group(offerings, lambda r: r.record_type).items()
                },
                "expenses": expenses,
                "expenses_by_category": {
                    key: values["total_amount"]
                    for key, values in self._group(bills, lambda r: r.record_type).items()
                },
                "advances_issued": advances_issued,
                "advances_returned": advances_returned,
                "advances_outstanding": advances_outstanding,
                "other_income": other_income,
                "other_expenses": other_expenses,
                "net": (
                    income + other_income
                    - expenses - other_expenses
                    - advances_outstanding
                ),
                "total_fund_balance": sum((f.current_balance for f in funds), ZERO),
            },
            description=self._describe("Financial report", request),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _list(self, kind: RecordKind, request: ReportRequest) -> list[FinancialRecord]:
        return await self._records.list_records(
            kind,
            date_from=request.date_from,
            date_to=request.date_to,
        )

    def _in_range(self, value: date, request: ReportRequest) -> bool:
        if request.date_from and value < request.date_from:
            return False
        if request.date_to and value > request.date_to:
            return False
        return True

    def _group(self, records: list[FinancialRecord], key) -> dict[str, dict]:
        groups: dict[str, dict] = {}
        for record in sorted(records, key=key):
            group = groups.setdefault(key(record), {"total_amount": ZERO, "count": 0})
            group["total_amount"] += record.amount
            group["count"] += 1
        return groups

    def _grouped_result(
        self,
        request: ReportRequest,
        kind: RecordKind,
        records: list[FinancialRecord],
        groups: dict[str, dict],
        group_by: str,
    ) -> ReportResult:
        if not records:
            return ReportResult(
                report_id=request.report_id,
                success=True,
                data_found=False,
                result_count=0,
                description=self._describe(f"No {kind.value} records found", request),
            )

        results = [{group_by: name, **values} for name, values in groups.items()]
        return ReportResult(
            report_id=request.report_id,
            success=True,
            data_found=True,
            result_count=len(results),
            results=results,
            aggregation_result={
                "total_amount": sum((r.amount for r in records), ZERO),
                "record_count": len(records),
            },
            description=self._describe(
                f"Total {kind.value} amount by {group_by}", request
            ),
        )

    def _fund_to_dict(self, fund: Fund) -> dict:
        """Convert a fund to a dictionary for results."""
        return {
            "id": str(fund.id),
            "name": fund.name,
            "current_balance": fund.current_balance,
            "description": fund.description,
        }

    def _describe(self, prefix: str, request: ReportRequest) -> str:
        date_str = self._date_range_str(request.date_from, request.date_to)
        return f"{prefix} {date_str}".strip()

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""
