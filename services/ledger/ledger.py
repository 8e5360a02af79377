"""
Credit Ledger

Authoritative store of credit balances and their transaction history.

Guarantees:
- deduct() re-checks the balance inside the same atomic unit as the
  decrement, so an earlier check() is never trusted.
- A transaction is only recorded together with its balance mutation.
- Every write satisfies balance_after == balance_before + amount and
  balance_after >= 0; anything else raises LedgerInvariantViolation.

Usage:
    ledger = InMemoryCreditLedger()
    await ledger.open_account("user-1", plan="PRO", initial_balance=500)

    if await ledger.check("user-1", 30):
        tx = await ledger.deduct("user-1", 30, "Video generation - 60s", related_job_id="job-1")
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from core.errors import (
    AccountNotFound,
    InsufficientCredits,
    LedgerInvariantViolation,
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

logger = logging.getLogger(__name__)


def validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Credit amount must be a positive integer, got {amount!r}")


def validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")


def build_transaction(
    user_id: str,
    kind: TransactionKind,
    amount: int,
    balance_before: int,
    reason: str,
    related_job_id: Optional[str] = None,
    related_payment_id: Optional[str] = None,
) -> CreditTransaction:
    """Create a transaction record, enforcing the ledger invariants."""
    balance_after = balance_before + amount
    tx = CreditTransaction(
        transaction_id=str(uuid.uuid4()),
        user_id=user_id,
        kind=kind,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        reason=reason,
        related_job_id=related_job_id,
        related_payment_id=related_payment_id,
        created_at=datetime.now(timezone.utc),
    )
    verify_transaction(tx)
    return tx


def verify_transaction(tx: CreditTransaction) -> None:
    """Raise LedgerInvariantViolation if a transaction is inconsistent."""
    if tx.balance_after != tx.balance_before + tx.amount:
        raise LedgerInvariantViolation(
            f"Transaction {tx.transaction_id} for {tx.user_id}: "
            f"{tx.balance_before} + {tx.amount} != {tx.balance_after}"
        )
    if tx.balance_after < 0:
        raise LedgerInvariantViolation(
            f"Transaction {tx.transaction_id} drives {tx.user_id} to {tx.balance_after}"
        )
    if (tx.kind == TransactionKind.DEDUCTION) != (tx.amount < 0):
        raise LedgerInvariantViolation(
            f"Transaction {tx.transaction_id}: {tx.kind.value} with amount {tx.amount}"
        )


class CreditLedger(ABC):
    """Ledger operations shared by every storage backend."""

    @abstractmethod
    async def open_account(
        self,
        user_id: str,
        plan: str,
        initial_balance: int = 0,
    ) -> CreditAccount:
        """Create a user's account with a seed balance. Idempotent."""

    @abstractmethod
    async def get_balance(self, user_id: str) -> CreditBalance:
        """Current balance and plan."""

    async def check(self, user_id: str, amount: int) -> bool:
        """Read-only affordability check. Never mutates."""
        return (await self.get_balance(user_id)).balance >= amount

    async def confirm_usage(
        self,
        user_id: str,
        amount: int,
        operation: str,
        threshold: int = 50,
    ) -> CreditConfirmation:
        """
        Zero-trust check for a large operation before it is started.

        Operations costing more than threshold credits must be affordable
        outright; smaller ones just report whether the balance covers them.
        Never mutates.

        Raises:
            InsufficientCredits: A large operation exceeds the balance
            AccountNotFound: Unknown user
        """
        validate_amount(amount)
        balance = (await self.get_balance(user_id)).balance
        requires_confirmation = amount > threshold

        if requires_confirmation and balance < amount:
            logger.info(f"Refused {operation} for {user_id}: needs {amount}, has {balance}")
            raise InsufficientCredits(user_id, balance, amount)

        return CreditConfirmation(
            confirmed=balance >= amount,
            user_balance=balance,
            estimated_cost=amount,
            requires_confirmation=requires_confirmation,
        )

    @abstractmethod
    async def deduct(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_job_id: Optional[str] = None,
    ) -> CreditTransaction:
        """
        Atomically re-check and decrement a balance.

        Raises:
            InsufficientCredits: Balance is below amount at deduction time
            AccountNotFound: Unknown user
        """

    @abstractmethod
    async def credit(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        reason: str,
        related_payment_id: Optional[str] = None,
        related_job_id: Optional[str] = None,
    ) -> CreditTransaction:
        """Atomically increment a balance (purchase, bonus or refund)."""

    @abstractmethod
    async def history_page(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[TransactionKind] = None,
    ) -> HistoryPage:
        """One page of transactions, newest first, with totals."""

    async def history(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[TransactionKind] = None,
    ) -> list[CreditTransaction]:
        """Transactions for a user, newest first."""
        return (await self.history_page(user_id, page, page_size, kind)).transactions

    @abstractmethod
    async def get_stats(self, user_id: str) -> CreditStats:
        """Lifetime usage statistics."""


class InMemoryCreditLedger(CreditLedger):
    """
    Process-local ledger with one lock per account.

    Unrelated users never contend; concurrent operations on the same
    account are serialized so the transaction chain stays unbroken.
    """

    def __init__(self):
        self._accounts: dict[str, CreditAccount] = {}
        self._transactions: dict[str, list[CreditTransaction]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _account(self, user_id: str) -> CreditAccount:
        try:
            return self._accounts[user_id]
        except KeyError:
            raise AccountNotFound(user_id) from None

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        self._account(user_id)
        return self._locks[user_id]

    def _append(self, account: CreditAccount, tx: CreditTransaction) -> None:
        """Apply a validated transaction. Caller holds the account lock."""
        history = self._transactions[account.user_id]
        expected_before = history[-1].balance_after if history else account.initial_balance
        if tx.balance_before != expected_before or account.balance != expected_before:
            raise LedgerInvariantViolation(
                f"Ledger chain broken for {account.user_id}: account={account.balance}, "
                f"last={expected_before}, tx.before={tx.balance_before}"
            )
        history.append(tx)
        account.balance = tx.balance_after

    async def open_account(
        self,
        user_id: str,
        plan: str,
        initial_balance: int = 0,
    ) -> CreditAccount:
        if initial_balance < 0:
            raise ValueError("initial_balance must be non-negative")
        if user_id not in self._accounts:
            self._accounts[user_id] = CreditAccount(
                user_id=user_id,
                plan=plan,
                balance=initial_balance,
                initial_balance=initial_balance,
            )
            self._transactions[user_id] = []
            self._locks[user_id] = asyncio.Lock()
            logger.info(f"Opened credit account {user_id} ({plan}) with {initial_balance} credits")
        return self._accounts[user_id]

    async def get_balance(self, user_id: str) -> CreditBalance:
        account = self._account(user_id)
        return CreditBalance(balance=account.balance, plan=account.plan)

    async def deduct(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_job_id: Optional[str] = None,
    ) -> CreditTransaction:
        validate_amount(amount)

        async with self._lock_for(user_id):
            account = self._account(user_id)
            if account.balance < amount:
                raise InsufficientCredits(user_id, account.balance, amount)

            tx = build_transaction(
                user_id,
                TransactionKind.DEDUCTION,
                -amount,
                account.balance,
                reason,
                related_job_id=related_job_id,
            )
            self._append(account, tx)
            account.total_used += amount

        logger.info(f"Deducted {amount} credits from {user_id}: {reason} (balance {tx.balance_after})")
        return tx

    async def credit(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        reason: str,
        related_payment_id: Optional[str] = None,
        related_job_id: Optional[str] = None,
    ) -> CreditTransaction:
        validate_amount(amount)
        kind = TransactionKind(kind)
        if kind == TransactionKind.DEDUCTION:
            raise ValueError("Use deduct() for deductions")

        async with self._lock_for(user_id):
            account = self._account(user_id)
            tx = build_transaction(
                user_id,
                kind,
                amount,
                account.balance,
                reason,
                related_job_id=related_job_id,
                related_payment_id=related_payment_id,
            )
            self._append(account, tx)
            if kind == TransactionKind.PURCHASE:
                account.total_purchased += amount

        logger.info(f"Added {amount} credits to {user_id} ({kind.value}): {reason}")
        return tx

    async def history_page(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[TransactionKind] = None,
    ) -> HistoryPage:
        validate_page(page, page_size)
        self._account(user_id)

        matching = [
            tx for tx in reversed(self._transactions[user_id])
            if kind is None or tx.kind == kind
        ]
        start = (page - 1) * page_size
        return HistoryPage(
            transactions=matching[start:start + page_size],
            page=page,
            page_size=page_size,
            total=len(matching),
        )

    async def get_stats(self, user_id: str) -> CreditStats:
        account = self._account(user_id)
        counts = Counter(tx.kind for tx in self._transactions[user_id])
        return CreditStats(
            current_balance=account.balance,
            total_used=account.total_used,
            total_purchased=account.total_purchased,
            plan=account.plan,
            transactions={k.value: counts.get(k, 0) for k in TransactionKind},
        )
