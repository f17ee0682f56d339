"""
Ledger Core

An in-memory ledger with customer accounts, an append-only transaction log
and a concurrency-safe engine for deposits, withdrawals and transfers.
All monetary values use Decimal.
"""

__version__ = "1.0.0"
