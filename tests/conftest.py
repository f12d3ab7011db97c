"""
Shared fixtures.

Everything runs against InMemoryFinanceStorage. No Google Sheets calls
are made in tests.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from church_ledger.allocation import AllocationPolicy
from church_ledger.audit import AuditLogger
from church_ledger.config import AppSettings, LedgerSettings
from church_ledger.models.fund import Fund
from church_ledger.models.record import Member
from church_ledger.orchestrator import (
    AdvanceFlow,
    BillFlow,
    BillGroupFlow,
    FundFlow,
    OfferingFlow,
    SubmissionGuard,
    TransactionFlow,
)
from church_ledger.reconciliation import BalanceReconciliationEngine
from church_ledger.services.storage import InMemoryFinanceStorage
from church_ledger.validation import FinancialRecordValidator


@pytest.fixture
def ledger_settings():
    """No waiting between conflict retries."""
    return LedgerSettings(
        max_commit_attempts=5,
        retry_wait_min_seconds=0,
        retry_wait_max_seconds=0,
    )


@pytest.fixture
def app_settings():
    return AppSettings()


@pytest.fixture
def storage():
    return InMemoryFinanceStorage()


@pytest.fixture
def audit_logger(storage):
    return AuditLogger(storage)


@pytest.fixture
def engine(storage, ledger_settings, audit_logger):
    return BalanceReconciliationEngine(storage, storage, ledger_settings, audit_logger)


@pytest.fixture
def policy(ledger_settings):
    return AllocationPolicy(ledger_settings)


@pytest.fixture
def validator(storage, app_settings):
    return FinancialRecordValidator(storage, storage, app_settings, group_storage=storage)


@pytest.fixture
def guard(audit_logger):
    return SubmissionGuard(audit_logger)


@pytest.fixture
def flow_args(storage, engine, validator, policy, guard, audit_logger):
    return dict(
        funds=storage,
        records=storage,
        ledger=storage,
        members=storage,
        groups=storage,
        engine=engine,
        validator=validator,
        policy=policy,
        guard=guard,
        audit_logger=audit_logger,
    )


@pytest.fixture
def offering_flow(flow_args):
    return OfferingFlow(**flow_args)


@pytest.fixture
def bill_flow(flow_args):
    return BillFlow(**flow_args)


@pytest.fixture
def advance_flow(flow_args):
    return AdvanceFlow(**flow_args)


@pytest.fixture
def fund_flow(flow_args):
    return FundFlow(**flow_args)


@pytest.fixture
def transaction_flow(flow_args):
    return TransactionFlow(**flow_args)


@pytest.fixture
def bill_group_flow(flow_args):
    return BillGroupFlow(**flow_args)


@pytest_asyncio.fixture
async def funds(engine):
    """Management, Mission and Building with opening balances, by name."""
    opened = {}
    for name, balance in (
        ("Management", Decimal("1000.00")),
        ("Mission", Decimal("500.00")),
        ("Building", Decimal("0")),
    ):
        fund = Fund(name=name, current_balance=balance)
        await engine.open_fund(fund)
        opened[name] = fund
    return opened


@pytest_asyncio.fixture
async def member(storage):
    member = Member(name="Rina Gomes", fellowship_name="Youth Fellowship")
    await storage.save_member(member)
    return member
