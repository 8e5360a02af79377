"""
Credit Ledger

Prepaid credit balances with an append-only transaction history.
- InMemoryCreditLedger: process-local, per-account locks
- PostgresCreditLedger: asyncpg, row-level locking
"""

from .ledger import (
    CreditLedger,
    InMemoryCreditLedger,
    build_transaction,
    verify_transaction,
)
from .models import (
    CreditAccount,
    CreditBalance,
    CreditConfirmation,
    CreditStats,
    CreditTransaction,
    HistoryPage,
    TransactionKind,
)
from .postgres import PostgresCreditLedger, create_pool

__all__ = [
    "CreditLedger",
    "InMemoryCreditLedger",
    "PostgresCreditLedger",
    "create_pool",
    "build_transaction",
    "verify_transaction",
    "CreditAccount",
    "CreditBalance",
    "CreditConfirmation",
    "CreditStats",
    "CreditTransaction",
    "HistoryPage",
    "TransactionKind",
]
