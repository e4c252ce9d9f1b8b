"""Prefix grinding for RPA discoverability.

Scanning indexers bucket transactions by the leading bytes of
``hash256(version || vin_count || first_input)``. A sender can make a payment
land in the receiver's bucket by varying a 32-bit nonce spread across the
first input's sequence (low 16 bits) and the locktime (high 16 bits), and
re-signing after every change.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable
from dataclasses import dataclass

from bch_stealth.bch.transaction import Transaction, encode_varint
from bch_stealth.utils.crypto import hash256

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 256

Signer = Callable[[Transaction], Transaction]


@dataclass(frozen=True)
class GrindResult:
    """Outcome of a grind.

    ``found`` is False when the bound was exhausted; ``tx`` is then the
    original transaction with its nonce fields untouched, freshly signed.
    """

    tx: Transaction
    found: bool
    attempts: int
    prefix_hex: str
    target_hex: str
    nonce: int | None


def target_prefix(scan_pub33: bytes, bits: int = 16, override: bytes | None = None) -> bytes:
    """Bucket a receiver scans: bytes 1..2 (16-bit) or byte 1 (8-bit) of ``Q``.

    Raises:
        ValueError: On unsupported *bits* or a bad override length.
    """
    if bits not in (8, 16):
        msg = f"prefix bits must be 8 or 16, got {bits}"
        raise ValueError(msg)
    width = bits // 8
    if override is not None:
        if len(override) != width:
            msg = f"prefix override must be {width} byte(s), got {len(override)}"
            raise ValueError(msg)
        return override
    if len(scan_pub33) != 33:
        msg = f"scan public key must be 33 bytes, got {len(scan_pub33)}"
        raise ValueError(msg)
    return scan_pub33[1 : 1 + width]


def input_prefix(tx: Transaction, width: int = 2) -> bytes:
    """Leading bytes of ``hash256(version || vin_count || first_input)``."""
    if not tx.inputs:
        msg = "transaction has no inputs"
        raise ValueError(msg)
    preimage = struct.pack("<I", tx.version & 0xFFFFFFFF) + encode_varint(len(tx.inputs)) + tx.inputs[0].serialize()
    return hash256(preimage)[:width]


def apply_nonce(tx: Transaction, nonce: int) -> Transaction:
    """Write *nonce* into input 0's sequence (low 16) and locktime (high 16)."""
    nonce &= 0xFFFFFFFF
    inp = tx.inputs[0]
    inp.sequence = (inp.sequence & 0xFFFF0000) | (nonce & 0xFFFF)
    tx.locktime = (tx.locktime & 0x0000FFFF) | ((nonce >> 16) << 16)
    return tx


def grind_first_input(
    tx: Transaction,
    sign: Signer,
    target: bytes,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> GrindResult:
    """Search nonces until the first-input prefix matches *target*.

    Args:
        tx: Unsigned or signed candidate; it is not mutated.
        sign: Re-signs input 0 of the transaction passed to it (in place) and
            returns it.
        target: 1 or 2 byte bucket to hit.
        max_attempts: Upper bound on nonces tried.
    """
    if not 1 <= len(target) <= 2:
        msg = f"target prefix must be 1 or 2 bytes, got {len(target)}"
        raise ValueError(msg)
    width = len(target)

    original = sign(tx.clone())
    attempts = 0
    for nonce in range(max(0, max_attempts)):
        candidate = sign(apply_nonce(tx.clone(), nonce))
        attempts += 1
        prefix = input_prefix(candidate, width)
        if prefix == target:
            logger.debug("grind hit prefix %s after %d attempts (nonce=%d)", prefix.hex(), attempts, nonce)
            return GrindResult(
                tx=candidate,
                found=True,
                attempts=attempts,
                prefix_hex=prefix.hex(),
                target_hex=target.hex(),
                nonce=nonce,
            )

    logger.warning("grind exhausted %d attempts without hitting prefix %s", attempts, target.hex())
    return GrindResult(
        tx=original,
        found=False,
        attempts=attempts,
        prefix_hex=input_prefix(original, width).hex(),
        target_hex=target.hex(),
        nonce=None,
    )
