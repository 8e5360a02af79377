"""
PostgreSQL Credit Ledger

Persists accounts and transactions with asyncpg. Each balance change runs
in one database transaction that locks the user's account row
(SELECT ... FOR UPDATE), so concurrent deductions for the same user are
serialized by the database while other users proceed independently. The
balance column also carries a CHECK (balance >= 0) constraint.

Usage:
    pool = await asyncpg.create_pool(config.database.url)
    ledger = PostgresCreditLedger(pool)
    await ledger.create_schema()
"""

import logging
from typing import Optional

import asyncpg

from core.config import DatabaseConfig
from core.errors import AccountNotFound, InsufficientCredits

from .ledger import (
    CreditLedger,
    build_transaction,
    validate_amount,
    validate_page,
)
from .models import (
    CreditAccount,
    CreditBalance,
    CreditStats,
    CreditTransaction,
    HistoryPage,
    TransactionKind,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS credit_accounts (
    user_id          TEXT PRIMARY KEY,
    plan             TEXT NOT NULL,
    balance          BIGINT NOT NULL CHECK (balance >= 0),
    initial_balance  BIGINT NOT NULL DEFAULT 0,
    total_used       BIGINT NOT NULL DEFAULT 0,
    total_purchased  BIGINT NOT NULL DEFAULT 0,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS credit_transactions (
    seq                 BIGSERIAL PRIMARY KEY,
    id                  TEXT NOT NULL UNIQUE,
    user_id             TEXT NOT NULL REFERENCES credit_accounts(user_id),
    kind                TEXT NOT NULL,
    amount              BIGINT NOT NULL,
    balance_before      BIGINT NOT NULL,
    balance_after       BIGINT NOT NULL CHECK (balance_after >= 0),
    reason              TEXT NOT NULL,
    related_job_id      TEXT,
    related_payment_id  TEXT,
    created_at          TIMESTAMPTZ NOT NULL,
    CHECK (balance_after = balance_before + amount)
);

CREATE INDEX IF NOT EXISTS idx_credit_transactions_user
    ON credit_transactions (user_id, seq DESC);
"""

_INSERT_TRANSACTION = """
    INSERT INTO credit_transactions (
        id,
        user_id,
        kind,
        amount,
        balance_before,
        balance_after,
        reason,
        related_job_id,
        related_payment_id,
        created_at
    ) VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10
    )
"""


def _row_to_transaction(row) -> CreditTransaction:
    return CreditTransaction(
        transaction_id=row["id"],
        user_id=row["user_id"],
        kind=TransactionKind(row["kind"]),
        amount=row["amount"],
        balance_before=row["balance_before"],
        balance_after=row["balance_after"],
        reason=row["reason"],
        related_job_id=row["related_job_id"],
        related_payment_id=row["related_payment_id"],
        created_at=row["created_at"],
    )


async def create_pool(config: DatabaseConfig) -> asyncpg.Pool:
    """Create the connection pool for the ledger."""
    return await asyncpg.create_pool(
        config.url,
        min_size=config.pool_min_size,
        max_size=config.pool_max_size,
    )


class PostgresCreditLedger(CreditLedger):
    """Credit ledger backed by PostgreSQL."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def create_schema(self) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def open_account(
        self,
        user_id: str,
        plan: str,
        initial_balance: int = 0,
    ) -> CreditAccount:
        if initial_balance < 0:
            raise ValueError("initial_balance must be non-negative")

        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO credit_accounts (user_id, plan, balance, initial_balance)
                VALUES ($1, $2, $3, $3)
                ON CONFLICT (user_id) DO NOTHING
                """,
                user_id,
                plan,
                initial_balance,
            )
            row = await conn.fetchrow(
                "SELECT * FROM credit_accounts WHERE user_id = $1",
                user_id,
            )

        return CreditAccount(
            user_id=row["user_id"],
            plan=row["plan"],
            balance=row["balance"],
            initial_balance=row["initial_balance"],
            total_used=row["total_used"],
            total_purchased=row["total_purchased"],
            created_at=row["created_at"],
        )

    async def get_balance(self, user_id: str) -> CreditBalance:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT balance, plan FROM credit_accounts WHERE user_id = $1",
                user_id,
            )
        if row is None:
            raise AccountNotFound(user_id)
        return CreditBalance(balance=row["balance"], plan=row["plan"])

    async def _lock_account(self, conn, user_id: str):
        row = await conn.fetchrow(
            "SELECT balance FROM credit_accounts WHERE user_id = $1 FOR UPDATE",
            user_id,
        )
        if row is None:
            raise AccountNotFound(user_id)
        return row

    async def deduct(
        self,
        user_id: str,
        amount: int,
        reason: str,
        related_job_id: Optional[str] = None,
    ) -> CreditTransaction:
        validate_amount(amount)

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_account(conn, user_id)
                balance = row["balance"]
                if balance < amount:
                    raise InsufficientCredits(user_id, balance, amount)

                tx = build_transaction(
                    user_id,
                    TransactionKind.DEDUCTION,
                    -amount,
                    balance,
                    reason,
                    related_job_id=related_job_id,
                )
                await conn.execute(
                    """
                    UPDATE credit_accounts SET
                        balance = $2,
                        total_used = total_used + $3
                    WHERE user_id = $1
                    """,
                    user_id,
                    tx.balance_after,
                    amount,
                )
                await self._insert(conn, tx)

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

        purchased = amount if kind == TransactionKind.PURCHASE else 0

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_account(conn, user_id)
                tx = build_transaction(
                    user_id,
                    kind,
                    amount,
                    row["balance"],
                    reason,
                    related_job_id=related_job_id,
                    related_payment_id=related_payment_id,
                )
                await conn.execute(
                    """
                    UPDATE credit_accounts SET
                        balance = $2,
                        total_purchased = total_purchased + $3
                    WHERE user_id = $1
                    """,
                    user_id,
                    tx.balance_after,
                    purchased,
                )
                await self._insert(conn, tx)

        logger.info(f"Added {amount} credits to {user_id} ({kind.value}): {reason}")
        return tx

    async def _insert(self, conn, tx: CreditTransaction) -> None:
        await conn.execute(
            _INSERT_TRANSACTION,
            tx.transaction_id,
            tx.user_id,
            tx.kind.value,
            tx.amount,
            tx.balance_before,
            tx.balance_after,
            tx.reason,
            tx.related_job_id,
            tx.related_payment_id,
            tx.created_at,
        )

    async def history_page(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[TransactionKind] = None,
    ) -> HistoryPage:
        validate_page(page, page_size)
        offset = (page - 1) * page_size
        kind_value = TransactionKind(kind).value if kind else None

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM credit_transactions
                WHERE user_id = $1 AND ($2::text IS NULL OR kind = $2)
                ORDER BY seq DESC
                LIMIT $3 OFFSET $4
                """,
                user_id,
                kind_value,
                page_size,
                offset,
            )
            total = await conn.fetchval(
                """
                SELECT COUNT(*) FROM credit_transactions
                WHERE user_id = $1 AND ($2::text IS NULL OR kind = $2)
                """,
                user_id,
                kind_value,
            )

        return HistoryPage(
            transactions=[_row_to_transaction(row) for row in rows],
            page=page,
            page_size=page_size,
            total=total or 0,
        )

    async def get_stats(self, user_id: str) -> CreditStats:
        async with self.db_pool.acquire() as conn:
            account = await conn.fetchrow(
                """
                SELECT balance, total_used, total_purchased, plan
                FROM credit_accounts WHERE user_id = $1
                """,
                user_id,
            )
            if account is None:
                raise AccountNotFound(user_id)

            rows = await conn.fetch(
                """
                SELECT kind, COUNT(*) AS count
                FROM credit_transactions
                WHERE user_id = $1
                GROUP BY kind
                """,
                user_id,
            )

        counts = {row["kind"]: row["count"] for row in rows}
        return CreditStats(
            current_balance=account["balance"],
            total_used=account["total_used"],
            total_purchased=account["total_purchased"],
            plan=account["plan"],
            transactions={k.value: counts.get(k.value, 0) for k in TransactionKind},
        )
