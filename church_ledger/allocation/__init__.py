"""Fund allocation package."""

from church_ledger.allocation.policy import (
    AllocationPolicy,
    find_fund_by_keyword,
)

__all__ = [
    "AllocationPolicy",
    "find_fund_by_keyword",
]
