"""Services package."""

from church_ledger.services.storage import (
    AuditStorageInterface,
    ConcurrencyConflictError,
    ConnectionError,
    DuplicateError,
    FundStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
    InMemoryFinanceStorage,
    LedgerStorageInterface,
    MemberStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConcurrencyConflictError",
    "ConnectionError",
    "DuplicateError",
    "FundStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStorage",
    "InMemoryFinanceStorage",
    "LedgerStorageInterface",
    "MemberStorageInterface",
    "NotFoundError",
    "RecordStorageInterface",
    "StorageError",
]
