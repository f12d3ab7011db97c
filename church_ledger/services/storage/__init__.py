"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves
unconfigured installs and tests.
"""

from church_ledger.services.storage.interface import (
    AuditStorageInterface,
    BillGroupStorageInterface,
    ConcurrencyConflictError,
    ConnectionError,
    DuplicateError,
    FundStorageInterface,
    LedgerStorageInterface,
    MemberStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StaleRecordError,
    StorageError,
)
from church_ledger.services.storage.memory import InMemoryFinanceStorage
from church_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BillGroupStorageInterface",
    "FundStorageInterface",
    "LedgerStorageInterface",
    "MemberStorageInterface",
    "RecordStorageInterface",
    # Exceptions
    "ConcurrencyConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StaleRecordError",
    "StorageError",
    # In-memory implementation
    "InMemoryFinanceStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStorage",
]
