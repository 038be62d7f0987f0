"""
Wallet Ledger for Reseller Prepaid Balances

This module provides:
- One wallet per reseller, created lazily on first credit
- Immutable credit and debit transactions
- Balance guard: a wallet never goes negative
- Idempotent postings keyed by reference
- Reconciliation of stored balance against the transaction log
"""

from .models import (
    TransactionType,
    Wallet,
    WalletTransaction,
    LedgerPosting,
    LedgerReconciliation,
)
from .service import LedgerService

__all__ = [
    "TransactionType",
    "Wallet",
    "WalletTransaction",
    "LedgerPosting",
    "LedgerReconciliation",
    "LedgerService",
]
