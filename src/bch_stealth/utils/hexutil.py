"""Hex and fixed-width integer codecs shared by the tx and pool layers."""

from __future__ import annotations

import re
import struct

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_TXID_RE = re.compile(r"^[0-9a-f]{64}$")


def hex_to_bytes(value: str, *, length: int | None = None, label: str = "value") -> bytes:
    """Decode a hex string, optionally enforcing an exact byte length.

    Raises:
        ValueError: If *value* is not even-length hex or has the wrong length.
    """
    text = value.strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    if len(text) % 2 or not _HEX_RE.match(text):
        msg = f"{label} must be hex"
        raise ValueError(msg)
    raw = bytes.fromhex(text)
    if length is not None and len(raw) != length:
        msg = f"{label} must be {length} bytes, got {len(raw)}"
        raise ValueError(msg)
    return raw


def normalize_txid(txid: str) -> str:
    """Lower-case a txid and check it is 64 hex chars."""
    t = str(txid).strip().lower()
    if not _TXID_RE.match(t):
        msg = f"invalid txid (expected 64 hex chars): {txid!r}"
        raise ValueError(msg)
    return t


def parse_outpoint(outpoint: str) -> tuple[str, int]:
    """Parse ``txid:vout`` into its parts."""
    txid_raw, sep, vout_raw = str(outpoint).partition(":")
    if not sep:
        msg = f"invalid outpoint (expected txid:vout): {outpoint!r}"
        raise ValueError(msg)
    txid = normalize_txid(txid_raw)
    try:
        vout = int(vout_raw.strip())
    except ValueError:
        msg = f"invalid outpoint vout: {outpoint!r}"
        raise ValueError(msg) from None
    if vout < 0:
        msg = f"invalid outpoint vout: {outpoint!r}"
        raise ValueError(msg)
    return txid, vout


def outpoint_key(txid: str, vout: int) -> str:
    return f"{txid.lower()}:{int(vout)}"


def u32le(n: int) -> bytes:
    return struct.pack("<I", n & 0xFFFFFFFF)


def u32be(n: int) -> bytes:
    return struct.pack(">I", n & 0xFFFFFFFF)


def u64le(n: int) -> bytes:
    return struct.pack("<Q", n)
