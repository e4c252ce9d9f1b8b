"""Base exception class and the tagged error taxonomy."""

from __future__ import annotations


class StealthError(Exception):
    """Base error for all bch-stealth operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "stealth-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(StealthError):
    """Malformed input rejected before anything is attempted."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="validation")


class DerivationMismatchError(StealthError):
    """A stored record disagrees with what re-derivation produces.

    Treated as state corruption: the operation aborts and nothing is patched.
    """

    def __init__(self, message: str, *, expected_hash160: str = "", derived_hash160: str = "") -> None:
        super().__init__(message, code="derivation-mismatch")
        self.expected_hash160 = expected_hash160
        self.derived_hash160 = derived_hash160


class InsufficientFundsError(StealthError):
    """Not enough value to cover outputs, fee and dust limits."""

    def __init__(self, message: str, *, required: int, available: int) -> None:
        shortfall = max(0, required - available)
        super().__init__(
            f"{message} (required={required}, available={available}, shortfall={shortfall})",
            code="insufficient-funds",
        )
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class NotFoundError(StealthError):
    """A referenced deposit, record or prevout does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="not-found")
