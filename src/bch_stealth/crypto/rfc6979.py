"""RFC6979 deterministic nonce generation, BCH Schnorr flavour.

The message is extended with the 16-byte tag ``"Schnorr+SHA256  "`` before
reduction so Schnorr nonces never collide with ECDSA nonces for the same key
and message.
"""

from __future__ import annotations

from bch_stealth.crypto.curve import N, int_from_bytes, int_to_bytes32
from bch_stealth.utils.crypto import hmac_sha256

SCHNORR_NONCE_TAG = b"Schnorr+SHA256  "


def nonce_rfc6979(priv: int, msg32: bytes, extra: bytes = SCHNORR_NONCE_TAG) -> int:
    """Return a nonce ``k`` in ``[1, n-1]`` for *priv* and *msg32*.

    Args:
        priv: Private scalar (already reduced mod n, non-zero).
        msg32: 32-byte message hash.
        extra: Additional data appended to the message (16 bytes).
    """
    if len(msg32) != 32:
        msg = f"message hash must be 32 bytes, got {len(msg32)}"
        raise ValueError(msg)

    x = int_to_bytes32(priv)
    h1 = int_to_bytes32(int_from_bytes(msg32 + extra) % N)

    k = b"\x00" * 32
    v = b"\x01" * 32
    k = hmac_sha256(k, v + b"\x00" + x + h1)
    v = hmac_sha256(k, v)
    k = hmac_sha256(k, v + b"\x01" + x + h1)
    v = hmac_sha256(k, v)

    while True:
        v = hmac_sha256(k, v)
        candidate = int_from_bytes(v) % N
        if candidate > 0:
            return candidate
        k = hmac_sha256(k, v + b"\x00")
        v = hmac_sha256(k, v)
