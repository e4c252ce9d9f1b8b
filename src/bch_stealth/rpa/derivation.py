"""Stealth (RPA) one-time key derivation.

A paycode publishes only the receiver's scan public key ``Q``. The spend key
is derived from it deterministically::

    t = sha256("bch-stealth:rpa:spend:" || Q) mod n
    R = Q + tG            (public)
    f = d + t mod n       (private, d = scan private key)

For a payment funded by outpoint ``(txid, vout)`` the sender, holding input
key ``e``, and the receiver, holding ``d``, compute the same shared secret
from ``eQ == dP`` and use it as the chain code of a non-hardened child
derivation under ``R``/``f``.

The outpoint string is ``f"{txid}{vout}"`` with the txid in the hex form the
caller supplies. No byte reversal is applied; both sides must use the same
convention.
"""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass

from bch_stealth.crypto.curve import (
    N,
    int_from_bytes,
    int_to_bytes32,
    is_infinity,
    mul_g,
    point_to_pub33,
    priv_to_int,
    pub33_to_point,
    pubkey_from_priv,
)
from bch_stealth.utils.crypto import hash160, hmac_sha512, sha256
from bch_stealth.utils.hexutil import normalize_txid

logger = logging.getLogger(__name__)

SPEND_TWEAK_TAG = b"bch-stealth:rpa:spend:"


class RpaMode(enum.StrEnum):
    """What a derived one-time key is used for."""

    STEALTH_P2PKH = "stealth-p2pkh"
    CONFIDENTIAL_ASSET = "confidential-asset"
    PQ_VAULT = "pq-vault"


@dataclass(frozen=True)
class RpaContext:
    """Everything a receiver needs to re-derive a one-time key.

    Attributes:
        sender_pub33_hex: Public key of the input that funded the payment.
        prevout_txid_hex: Txid of that input's outpoint, as used in the secret.
        prevout_n: Vout of that input's outpoint.
        index: Child index under the shared secret.
        mode: Derivation mode.
    """

    sender_pub33_hex: str
    prevout_txid_hex: str
    prevout_n: int
    index: int = 0
    mode: RpaMode = RpaMode.STEALTH_P2PKH

    def __post_init__(self) -> None:
        if len(bytes.fromhex(self.sender_pub33_hex)) != 33:
            msg = "sender_pub33_hex must encode 33 bytes"
            raise ValueError(msg)
        normalize_txid(self.prevout_txid_hex)
        if self.prevout_n < 0 or self.index < 0:
            msg = "prevout_n and index must be non-negative"
            raise ValueError(msg)


@dataclass(frozen=True)
class StealthOutput:
    """Sender-side result of a one-time key derivation."""

    child_pub33: bytes
    child_hash160: bytes
    shared_secret: bytes
    context: RpaContext


@dataclass(frozen=True)
class SessionKeys:
    """Symmetric keys bound to one stealth payment."""

    session_key: bytes
    amount_key: bytes
    memo_key: bytes
    zk_seed: bytes


# ---------------------------------------------------------------------------
# Dual-key mapping
# ---------------------------------------------------------------------------


def spend_tweak(scan_pub33: bytes) -> int:
    return int_from_bytes(sha256(SPEND_TWEAK_TAG + scan_pub33)) % N


def spend_pub_from_scan_pub(scan_pub33: bytes) -> bytes:
    """``R = Q + tG``."""
    t = spend_tweak(scan_pub33)
    q = pub33_to_point(scan_pub33)
    if t == 0:
        return scan_pub33
    r = q + mul_g(t)
    if is_infinity(r):
        msg = "spend key derivation hit the point at infinity"
        raise ValueError(msg)
    return point_to_pub33(r)


def spend_priv_from_scan_priv(scan_priv32: bytes) -> bytes:
    """``f = d + t mod n``."""
    d = priv_to_int(scan_priv32)
    f = (d + spend_tweak(pubkey_from_priv(scan_priv32))) % N
    if f == 0:
        msg = "derived spend key is zero"
        raise ValueError(msg)
    return int_to_bytes32(f)


# ---------------------------------------------------------------------------
# Shared secret and child derivation
# ---------------------------------------------------------------------------


def outpoint_string(txid_hex: str, vout: int) -> str:
    return f"{normalize_txid(txid_hex)}{int(vout)}"


def shared_secret(priv32: bytes, pub33: bytes, outpoint_str: str) -> bytes:
    """``sha256(int(sha256(X33)) + int(sha256(outpoint_str)))``.

    ``X33`` is the x-coordinate of ``priv * pub`` as 33 big-endian bytes and
    the sum is serialised as minimal even-length hex.
    """
    if not outpoint_str:
        msg = "outpoint string must not be empty"
        raise ValueError(msg)
    d = priv_to_int(priv32)
    product = pub33_to_point(pub33) * d
    if is_infinity(product):
        msg = "shared secret is the point at infinity"
        raise ValueError(msg)
    x33 = product.x().to_bytes(33, "big")
    grand = int_from_bytes(sha256(x33)) + int_from_bytes(sha256(outpoint_str.encode("utf-8")))
    grand_hex = f"{grand:x}"
    if len(grand_hex) % 2:
        grand_hex = "0" + grand_hex
    return sha256(bytes.fromhex(grand_hex))


def _child_tweak(parent_pub33: bytes, chain_code: bytes, index: int) -> int:
    if len(chain_code) != 32:
        msg = f"chain code must be 32 bytes, got {len(chain_code)}"
        raise ValueError(msg)
    if index < 0 or index >= 0x80000000:
        msg = f"index must be a non-hardened child index, got {index}"
        raise ValueError(msg)
    digest = hmac_sha512(chain_code, parent_pub33 + struct.pack(">I", index))
    return int_from_bytes(digest[:32]) % N


def ckd_pub(parent_pub33: bytes, chain_code: bytes, index: int = 0) -> bytes:
    """Non-hardened public child: ``IL*G + parent``."""
    il = _child_tweak(parent_pub33, chain_code, index)
    if il == 0:
        msg = "derived IL is zero"
        raise ValueError(msg)
    child = mul_g(il) + pub33_to_point(parent_pub33)
    if is_infinity(child):
        msg = "derived child is the point at infinity"
        raise ValueError(msg)
    return point_to_pub33(child)


def ckd_priv(parent_priv32: bytes, chain_code: bytes, index: int = 0) -> bytes:
    """Non-hardened private child: ``(IL + parent) mod n``."""
    il = _child_tweak(pubkey_from_priv(parent_priv32), chain_code, index)
    child = (il + priv_to_int(parent_priv32)) % N
    if child == 0:
        msg = "derived child private key is zero"
        raise ValueError(msg)
    return int_to_bytes32(child)


# ---------------------------------------------------------------------------
# Sender / receiver
# ---------------------------------------------------------------------------


def derive_one_time_pub_sender(
    sender_priv32: bytes,
    receiver_scan_pub33: bytes,
    prevout_txid_hex: str,
    prevout_n: int,
    index: int = 0,
    *,
    receiver_spend_pub33: bytes | None = None,
    mode: RpaMode = RpaMode.STEALTH_P2PKH,
) -> StealthOutput:
    """Derive the one-time public key a sender pays to.

    Args:
        sender_priv32: Private key of the input being spent (``e``).
        receiver_scan_pub33: Receiver scan key ``Q`` from the paycode.
        prevout_txid_hex: Txid of the outpoint spent by that input.
        prevout_n: Vout of that outpoint.
        index: Child index.
        receiver_spend_pub33: Spend key ``R``; derived from ``Q`` when omitted.
        mode: Derivation mode recorded in the context.
    """
    spend_pub = receiver_spend_pub33 or spend_pub_from_scan_pub(receiver_scan_pub33)
    secret = shared_secret(sender_priv32, receiver_scan_pub33, outpoint_string(prevout_txid_hex, prevout_n))
    child_pub = ckd_pub(spend_pub, secret, index)
    context = RpaContext(
        sender_pub33_hex=pubkey_from_priv(sender_priv32).hex(),
        prevout_txid_hex=normalize_txid(prevout_txid_hex),
        prevout_n=prevout_n,
        index=index,
        mode=mode,
    )
    child_h160 = hash160(child_pub)
    logger.debug("derived one-time key %s for outpoint %s:%d", child_h160.hex(), prevout_txid_hex, prevout_n)
    return StealthOutput(child_pub33=child_pub, child_hash160=child_h160, shared_secret=secret, context=context)


def receiver_shared_secret(scan_priv32: bytes, sender_pub33: bytes, prevout_txid_hex: str, prevout_n: int) -> bytes:
    """Receiver-side secret; compute once per input and reuse across indices."""
    return shared_secret(scan_priv32, sender_pub33, outpoint_string(prevout_txid_hex, prevout_n))


def derive_one_time_priv_receiver(
    scan_priv32: bytes,
    spend_priv32: bytes,
    sender_pub33: bytes,
    prevout_txid_hex: str,
    prevout_n: int,
    index: int = 0,
    *,
    secret: bytes | None = None,
) -> bytes:
    """Derive the private key for a one-time output addressed to us.

    Args:
        scan_priv32: Our scan private key ``d``.
        spend_priv32: Our spend private key ``f``.
        sender_pub33: Public key of the sender's funding input.
        prevout_txid_hex: Txid of the sender's funding outpoint.
        prevout_n: Vout of the sender's funding outpoint.
        index: Child index.
        secret: Precomputed shared secret, to skip the ECDH step.
    """
    if secret is None:
        secret = receiver_shared_secret(scan_priv32, sender_pub33, prevout_txid_hex, prevout_n)
    return ckd_priv(spend_priv32, secret, index)


def derive_from_context(scan_priv32: bytes, spend_priv32: bytes, context: RpaContext) -> bytes:
    """Re-derive the one-time private key described by a stored context."""
    return derive_one_time_priv_receiver(
        scan_priv32,
        spend_priv32,
        bytes.fromhex(context.sender_pub33_hex),
        context.prevout_txid_hex,
        context.prevout_n,
        context.index,
    )


def derive_session_keys(secret: bytes, txid_hex: str = "", vout: int = 0) -> SessionKeys:
    """Per-payment symmetric keys bound to the shared secret and an outpoint."""
    if len(secret) != 32:
        msg = f"shared secret must be 32 bytes, got {len(secret)}"
        raise ValueError(msg)
    base = sha256(secret + f"{txid_hex}:{vout}".encode())
    return SessionKeys(
        session_key=base,
        amount_key=sha256(base + b"amount")[:16],
        memo_key=sha256(base + b"memo")[:16],
        zk_seed=sha256(base + b"zk-seed"),
    )
