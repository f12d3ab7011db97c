"""
Fund Allocation Policy

Decides which fund(s) a record's amount is credited to or debited from.

DESIGN DECISION: The policy is pure. It gets the current fund list
passed in and never touches storage, so the same inputs always give the
same allocation and it can be tested without any backend.

Routing is by keyword: a route names a keyword ("mission"), and the
record lands in the FIRST fund, in list order, whose name contains it
(case-insensitive). If no fund matches, the allocation is empty and the
record is stored without moving any balance.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from church_ledger.config import LedgerSettings, get_settings
from church_ledger.models.fund import Fund
from church_ledger.models.record import (
    Advance,
    Allocation,
    Bill,
    FinancialRecord,
    Offering,
    OfferingType,
    Transaction,
)


def find_fund_by_keyword(funds: list[Fund], keyword: str) -> Optional[Fund]:
    """First fund whose name contains keyword, ignoring case."""
    for fund in funds:
        if fund.matches_keyword(keyword):
            return fund
    return None


def _check_amount(amount: Decimal) -> None:
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"Cannot allocate a non-positive amount: {amount}")


class AllocationPolicy:
    """
    Maps (record type, amount, known funds) to an allocation.

    Offerings:
        Mission Fund Offering  -> mission fund
        Building Fund Offering -> building fund
        anything else          -> default (management) fund
    Bills:
        explicit fund on the bill, else routed by category keyword
    Advances and manual transactions:
        the record's own fund
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    # =========================================================================
    # Routing
    # =========================================================================

    def keyword_for_offering(self, offering_type: OfferingType) -> str:
        if offering_type == OfferingType.MISSION:
            return self._settings.mission_fund_keyword
        if offering_type == OfferingType.BUILDING:
            return self._settings.building_fund_keyword
        return self._settings.default_fund_keyword

    def keyword_for_category(self, category: str) -> str:
        """Bills whose category mentions mission or building go there."""
        category = category.lower()
        for keyword in (
            self._settings.mission_fund_keyword,
            self._settings.building_fund_keyword,
        ):
            if keyword in category:
                return keyword
        return self._settings.default_fund_keyword

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate_offering(
        self,
        offering_type: OfferingType,
        amount: Decimal,
        funds: list[Fund],
    ) -> Allocation:
        _check_amount(amount)
        fund = find_fund_by_keyword(funds, self.keyword_for_offering(offering_type))
        return {fund.id: amount} if fund else {}

    def allocate_bill(
        self,
        category: str,
        amount: Decimal,
        funds: list[Fund],
        fund_id: Optional[UUID] = None,
    ) -> Allocation:
        _check_amount(amount)
        if fund_id is not None:
            # An explicit fund wins, but only if it exists
            known = {fund.id for fund in funds}
            return {fund_id: amount} if fund_id in known else {}

        fund = find_fund_by_keyword(funds, self.keyword_for_category(category))
        return {fund.id: amount} if fund else {}

    def allocate_advance(
        self,
        fund_id: UUID,
        amount: Decimal,
        funds: list[Fund],
    ) -> Allocation:
        _check_amount(amount)
        if any(fund.id == fund_id for fund in funds):
            return {fund_id: amount}
        return {}

    def allocate_transaction(
        self,
        fund_id: UUID,
        amount: Decimal,
        funds: list[Fund],
    ) -> Allocation:
        # Same rule as advances: the named fund, if it exists
        return self.allocate_advance(fund_id, amount, funds)

    def allocate(self, record: FinancialRecord, funds: list[Fund]) -> Allocation:
        """Allocation for any record, from its own type and amount."""
        if isinstance(record, Offering):
            return self.allocate_offering(record.offering_type, record.amount, funds)
        if isinstance(record, Bill):
            return self.allocate_bill(record.category, record.amount, funds, record.fund_id)
        if isinstance(record, Advance):
            return self.allocate_advance(record.fund_id, record.amount, funds)
        if isinstance(record, Transaction):
            return self.allocate_transaction(record.fund_id, record.amount, funds)
        raise TypeError(f"No allocation rule for {type(record).__name__}")
