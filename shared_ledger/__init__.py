"""
Shared Ledger - Source Package

Two people log shared cash outlays and reimbursements and see, at any
moment, who owes whom and how much.

DESIGN PRINCIPLES:
1. The store is the only source of truth; the local view is a cache
2. Balances are derived from the full event list, never stored
3. Invalid input never reaches the store
4. Destructive actions need an explicit second step
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Shared Ledger Team"
