"""
Generation Router Core Components

Provides foundational infrastructure for credit-metered job routing:
- Configuration loaded from the environment
- The error taxonomy shared by providers, ledger and orchestrator
"""

from .config import Config, get_config, reload_config
from .errors import (
    AccountNotFound,
    InsufficientCredits,
    InvalidTransition,
    JobNotFound,
    LedgerInvariantViolation,
    ProviderError,
    RouterError,
    UnknownProvider,
)

__all__ = [
    "Config",
    "get_config",
    "reload_config",
    "AccountNotFound",
    "InsufficientCredits",
    "InvalidTransition",
    "JobNotFound",
    "LedgerInvariantViolation",
    "ProviderError",
    "RouterError",
    "UnknownProvider",
]
