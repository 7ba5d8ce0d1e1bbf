"""
Budget Engine - Source Package

Balance recalculation engine for a household budget ledger: turns each
month's transaction log into authoritative start/end balances for every
account and category, and chains them across months.

DESIGN PRINCIPLES:
1. Derived balances are recomputed, never trusted from storage
2. Only anchor start balances are persisted, and only partially
3. "Now" is always passed in explicitly
4. Every recalculation pass is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Engine Team"
