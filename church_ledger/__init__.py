"""
Church Fund Ledger - Source Package

Bookkeeping for a church's funds: offerings coming in, bills and
advances going out, and transfers between funds.

DESIGN PRINCIPLES:
1. Validate → Allocate → Reconcile → Audit
2. Fail early, fail visibly
3. A fund balance only changes together with the ledger entry that explains it
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "0.1.0"
__author__ = "Church Fund Ledger Team"
