"""Validation gate package."""

from church_ledger.validation.validator import (
    FinancialRecordValidator,
    RecordValidationError,
    parse_amount,
)

__all__ = [
    "FinancialRecordValidator",
    "RecordValidationError",
    "parse_amount",
]
