"""Chain-client errors: network failures and broadcast rejections."""

from __future__ import annotations

from bch_stealth.errors.stealth_errors import StealthError


class NetworkError(StealthError):
    """Transport or RPC failure talking to the chain backend."""

    def __init__(self, message: str, *, code: str = "network") -> None:
        super().__init__(message, code=code)


class BroadcastError(NetworkError):
    """The backend rejected a raw transaction.

    Never retried: a second submission could be ambiguous with the first.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="broadcast-rejected")
