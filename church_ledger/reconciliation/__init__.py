"""Balance reconciliation package."""

from church_ledger.reconciliation.engine import (
    BalanceReconciliationEngine,
    InsufficientFundsError,
    ReconciliationError,
    ReconciliationResult,
    SameFundTransferError,
    compute_deltas,
)

__all__ = [
    "BalanceReconciliationEngine",
    "InsufficientFundsError",
    "ReconciliationError",
    "ReconciliationResult",
    "SameFundTransferError",
    "compute_deltas",
]
