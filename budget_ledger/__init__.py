"""
Budget Ledger - Source Package

Tracks a user's money across three sections (savings, expenses,
investments) and an undistributed income pool, recording every
movement as an immutable transaction.

DESIGN PRINCIPLES:
1. Balances always equal the signed sum of recorded transactions
2. Every money movement is one all-or-nothing unit of work
3. Fail early, fail visibly - no silent corrections
4. Every committed change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
