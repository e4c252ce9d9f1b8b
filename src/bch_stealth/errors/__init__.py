"""Error taxonomy: validation, derivation mismatch, funds, not-found, network."""

from bch_stealth.errors.chain_errors import BroadcastError, NetworkError
from bch_stealth.errors.stealth_errors import (
    DerivationMismatchError,
    InsufficientFundsError,
    NotFoundError,
    StealthError,
    ValidationError,
)

__all__ = [
    "BroadcastError",
    "DerivationMismatchError",
    "InsufficientFundsError",
    "NetworkError",
    "NotFoundError",
    "StealthError",
    "ValidationError",
]
