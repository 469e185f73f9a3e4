"""
TransactChain Ledger Core

Account balances, atomic transfers with country-based cross-border fees,
and an append-only transaction log, safe under concurrent requests.
"""

__version__ = "1.0.0"
