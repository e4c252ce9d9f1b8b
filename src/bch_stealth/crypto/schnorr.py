"""BCH 2019 Schnorr signatures.

Signatures are ``r || s`` (64 bytes). ``R`` is forced to have a
quadratic-residue y-coordinate by negating the nonce, so no parity bit is
carried. The challenge commits to the compressed public key::

    e = SHA256(R.x || pub33 || msg32) mod n
"""

from __future__ import annotations

from bch_stealth.crypto.curve import (
    N,
    P,
    int_from_bytes,
    int_to_bytes32,
    is_infinity,
    is_quadratic_residue,
    mul_g,
    priv_to_int,
    pub33_to_point,
    pubkey_from_priv,
)
from bch_stealth.crypto.rfc6979 import nonce_rfc6979
from bch_stealth.utils.crypto import sha256


def _challenge(rx: bytes, pub33: bytes, msg32: bytes) -> int:
    return int_from_bytes(sha256(rx + pub33 + msg32)) % N


def _recompute_r(sig64: bytes, msg32: bytes, pub33: bytes):  # type: ignore[no-untyped-def]
    pub_point = pub33_to_point(pub33)
    s = int_from_bytes(sig64[32:64])
    e = _challenge(sig64[:32], pub33, msg32)
    # R' = sG - eP, computed as sG + (n - e)P
    return mul_g(s) + pub_point * ((N - e) % N)


def schnorr_sign(msg32: bytes, priv32: bytes, pub33: bytes | None = None) -> bytes:
    """Sign a 32-byte message hash.

    Args:
        msg32: Message hash (typically a sighash).
        priv32: 32-byte private key.
        pub33: Compressed public key; derived from *priv32* when omitted.

    Returns:
        64-byte signature ``R.x || s``.

    Raises:
        ValueError: On bad input lengths or a key outside ``[1, n-1]``.
    """
    if len(msg32) != 32:
        msg = f"message hash must be 32 bytes, got {len(msg32)}"
        raise ValueError(msg)
    d = priv_to_int(priv32)
    if pub33 is None:
        pub33 = pubkey_from_priv(int_to_bytes32(d))
    if len(pub33) != 33:
        msg = f"public key must be 33 bytes, got {len(pub33)}"
        raise ValueError(msg)

    k = nonce_rfc6979(d, msg32)
    r_point = mul_g(k)
    ry = r_point.y()
    if ry % P == 0:
        msg = "nonce point has zero y-coordinate"
        raise ValueError(msg)
    if not is_quadratic_residue(ry):
        k = N - k
        r_point = mul_g(k)

    rx = int_to_bytes32(r_point.x())
    e = _challenge(rx, pub33, msg32)
    s = (k + e * d) % N
    return rx + int_to_bytes32(s)


def schnorr_verify(sig: bytes, msg32: bytes, pub33: bytes) -> bool:
    """Verify a BCH Schnorr signature.

    A 65-byte signature is accepted and its trailing sighash-type byte ignored.
    Returns False rather than raising on any malformed input.
    """
    if len(msg32) != 32 or len(pub33) != 33:
        return False
    if len(sig) == 65:
        sig = sig[:64]
    elif len(sig) != 64:
        return False

    rx = int_from_bytes(sig[:32])
    s = int_from_bytes(sig[32:])
    if rx >= P or s >= N:
        return False

    try:
        r_prime = _recompute_r(sig, msg32, pub33)
    except ValueError:
        return False
    if is_infinity(r_prime):
        return False
    if r_prime.x() != rx:
        return False
    return is_quadratic_residue(r_prime.y())


def nonce_point_is_residue(sig: bytes, msg32: bytes, pub33: bytes) -> bool:
    """Recompute ``R`` from a signature and apply the Jacobi test to its y.

    Lets callers check the parity rule independently of :func:`schnorr_verify`.
    """
    r_prime = _recompute_r(sig[:64], msg32, pub33)
    if is_infinity(r_prime):
        return False
    return is_quadratic_residue(r_prime.y())
