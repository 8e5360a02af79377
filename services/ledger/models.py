"""
Credit Ledger Models

Accounts hold a non-negative balance; every balance change is recorded as
an append-only transaction whose balance_after equals balance_before plus
its signed amount.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class TransactionKind(str, Enum):
    """Kinds of credit movement. Only deductions carry a negative amount."""
    DEDUCTION = "deduction"
    PURCHASE = "purchase"
    BONUS = "bonus"
    REFUND = "refund"


@dataclass
class CreditAccount:
    """One prepaid credit account per user."""
    user_id: str
    plan: str
    balance: int = 0
    initial_balance: int = 0
    total_used: int = 0
    total_purchased: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CreditTransaction:
    """Immutable record of one balance change."""
    transaction_id: str
    user_id: str
    kind: TransactionKind
    amount: int
    balance_before: int
    balance_after: int
    reason: str
    related_job_id: Optional[str] = None
    related_payment_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.transaction_id,
            "type": self.kind.value,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "related_job_id": self.related_job_id,
            "related_payment_id": self.related_payment_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class CreditBalance:
    balance: int
    plan: str


@dataclass(frozen=True)
class HistoryPage:
    """One page of transactions, newest first."""
    transactions: list[CreditTransaction]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.page_size) if self.total else 0


@dataclass(frozen=True)
class CreditStats:
    """Lifetime credit statistics for a user."""
    current_balance: int
    total_used: int
    total_purchased: int
    plan: str
    transactions: dict[str, int]


@dataclass(frozen=True)
class CreditConfirmation:
    """Outcome of checking an operation's cost against a balance."""
    confirmed: bool
    user_balance: int
    estimated_cost: int
    requires_confirmation: bool
