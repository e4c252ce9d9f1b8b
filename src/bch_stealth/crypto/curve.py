"""secp256k1 curve helpers built on ``ecdsa``.

All arithmetic goes through :class:`ecdsa.ellipticcurve.PointJacobi`; points
only leave this module as 33-byte SEC compressed encodings or as affine
``(x, y)`` integers.
"""

from __future__ import annotations

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CURVE = SECP256k1
N = CURVE.order
P = CURVE.curve.p()
G = CURVE.generator


# ---------------------------------------------------------------------------
# Integer / byte codecs
# ---------------------------------------------------------------------------


def int_from_bytes(data: bytes) -> int:
    return int.from_bytes(data, "big")


def int_to_bytes32(n: int) -> bytes:
    return n.to_bytes(32, "big")


def mod_n(x: int) -> int:
    return x % N


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------


def is_quadratic_residue(y: int) -> bool:
    """Jacobi test used by BCH Schnorr: ``y^((p-1)/2) mod p == 1``."""
    return pow(y, (P - 1) // 2, P) == 1


def point_from_xy(x: int, y: int) -> PointJacobi:
    """Build a curve point from affine coordinates.

    Raises:
        ValueError: If ``(x, y)`` is not on secp256k1.
    """
    if not CURVE.curve.contains_point(x, y):
        msg = "point is not on secp256k1"
        raise ValueError(msg)
    return PointJacobi(CURVE.curve, x, y, 1, N)


def pub33_to_point(pub33: bytes) -> PointJacobi:
    """Decode a 33-byte compressed public key.

    Raises:
        ValueError: On bad length, prefix, or an x with no curve point.
    """
    if len(pub33) != 33:
        msg = f"compressed public key must be 33 bytes, got {len(pub33)}"
        raise ValueError(msg)
    prefix = pub33[0]
    if prefix not in (0x02, 0x03):
        msg = f"invalid compressed key prefix: {prefix:#x}"
        raise ValueError(msg)
    x = int_from_bytes(pub33[1:])
    if x >= P:
        msg = "public key x-coordinate out of range"
        raise ValueError(msg)
    # y^2 = x^3 + 7 (mod p)
    y_sq = (pow(x, 3, P) + 7) % P
    y = pow(y_sq, (P + 1) // 4, P)
    if (y * y) % P != y_sq:
        msg = "public key x-coordinate is not on the curve"
        raise ValueError(msg)
    if (y % 2 == 0) != (prefix == 0x02):
        y = P - y
    return point_from_xy(x, y)


def point_to_pub33(point: PointJacobi) -> bytes:
    """Encode a non-infinity point as 33-byte SEC compressed bytes."""
    if is_infinity(point):
        msg = "cannot encode the point at infinity"
        raise ValueError(msg)
    x = point.x()
    y = point.y()
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + int_to_bytes32(x)


def is_infinity(point: PointJacobi) -> bool:
    return point is INFINITY or point == INFINITY


def mul_g(k: int) -> PointJacobi:
    """Scalar multiplication of the generator."""
    return G * k


def add(a: PointJacobi, b: PointJacobi) -> PointJacobi:
    return a + b


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def priv_to_int(priv32: bytes) -> int:
    """Validate a 32-byte private key and return its scalar.

    Raises:
        ValueError: If the key is not 32 bytes or is not in ``[1, n-1]``.
    """
    if len(priv32) != 32:
        msg = f"private key must be 32 bytes, got {len(priv32)}"
        raise ValueError(msg)
    d = int_from_bytes(priv32)
    if not 0 < d < N:
        msg = "private key out of range"
        raise ValueError(msg)
    return d


def pubkey_from_priv(priv32: bytes) -> bytes:
    """Derive the 33-byte compressed public key for a private key."""
    return point_to_pub33(mul_g(priv_to_int(priv32)))


def ensure_even_y_priv(priv32: bytes) -> bytes:
    """Return the private key whose public point has an even y-coordinate.

    Wallet keys are normalised this way on load so paycodes, hash160s and
    signatures all agree on a single key per secret.
    """
    d = priv_to_int(priv32)
    if mul_g(d).y() % 2 == 0:
        return priv32
    return int_to_bytes32(N - d)
