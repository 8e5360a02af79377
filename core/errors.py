"""
Error taxonomy for job routing and credit metering.

- InsufficientCredits: user-facing, never contacts a provider
- ProviderError: transient (retried once via fallback) or permanent
- LedgerInvariantViolation: programming bug, must crash loudly
- UnknownProvider: configuration error
"""

from typing import Optional


class RouterError(Exception):
    """Base class for all errors raised by the generation router."""


class InsufficientCredits(RouterError):
    """Raised when a user's balance cannot cover a charge."""

    def __init__(self, user_id: str, balance: int, required: int):
        self.user_id = user_id
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient credits. You have {balance} credits but need {required}"
        )


class AccountNotFound(RouterError):
    """Raised when a ledger operation targets an unknown user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No credit account for user {user_id}")


class ProviderError(RouterError):
    """Raised when a generation provider fails or rejects a request."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_code: Optional[str] = None,
        permanent: bool = False,
    ):
        self.provider = provider
        self.error_code = error_code
        # Permanent errors (prompt rejected, invalid input) are never retried
        self.permanent = permanent
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return not self.permanent


class UnknownProvider(RouterError):
    """Raised when a provider id is not registered."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")


class LedgerInvariantViolation(RouterError):
    """
    A ledger write broke balance consistency.

    This is never a user-facing condition: it means the atomic update
    boundary was bypassed somewhere. Do not catch it.
    """


class InvalidTransition(RouterError):
    """Raised when a job is moved along an edge the state machine forbids."""

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")


class JobNotFound(RouterError):
    """Raised when a job id is not known to the orchestrator."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job: {job_id}")
