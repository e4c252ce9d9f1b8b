"""BCH script building and parsing.

Provides construction and parsing of the locking/unlocking scripts the pool
and stealth layers touch:
- minimal data pushes and script numbers
- P2PKH and P2SH locking scripts
- a push-only parser for unlocking bytecode
- Electrum scripthash computation
"""

from __future__ import annotations

import enum
import struct

from bch_stealth.utils.crypto import hash160, sha256

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Opcodes referenced by the builders below."""

    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_16 = 0x60
    OP_RETURN = 0x6A
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC


class ScriptType(enum.StrEnum):
    """Known locking script types."""

    P2PKH = "pubkeyhash"
    P2SH = "scripthash"
    NULL_DATA = "nulldata"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push using the shortest length prefix.

    An empty item is pushed as ``OP_0``.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


def minimal_script_number(n: int) -> bytes:
    """Encode *n* as a minimally-encoded script number (sign-magnitude LE).

    Zero encodes to the empty byte string.
    """
    if n == 0:
        return b""
    negative = n < 0
    v = -n if negative else n
    out = bytearray()
    while v > 0:
        out.append(v & 0xFF)
        v >>= 8
    if out[-1] & 0x80:
        out.append(0x80 if negative else 0x00)
    elif negative:
        out[-1] |= 0x80
    return bytes(out)


def decode_script_number(data: bytes) -> int:
    """Inverse of :func:`minimal_script_number`."""
    if not data:
        return 0
    value = int.from_bytes(data, "little")
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


def parse_pushes(script: bytes) -> list[bytes]:
    """Split push-only bytecode into its pushed items.

    ``OP_0`` yields ``b""`` and ``OP_1NEGATE``/``OP_1..OP_16`` yield their
    script-number encodings.

    Raises:
        ValueError: On a non-push opcode or a truncated push.
    """
    items: list[bytes] = []
    i = 0
    end = len(script)
    while i < end:
        op = script[i]
        i += 1
        if op == OpCode.OP_0:
            items.append(b"")
            continue
        if op <= 0x4B:
            size = op
        elif op == OpCode.OP_PUSHDATA1:
            if i + 1 > end:
                msg = "truncated OP_PUSHDATA1"
                raise ValueError(msg)
            size = script[i]
            i += 1
        elif op == OpCode.OP_PUSHDATA2:
            if i + 2 > end:
                msg = "truncated OP_PUSHDATA2"
                raise ValueError(msg)
            size = struct.unpack("<H", script[i : i + 2])[0]
            i += 2
        elif op == OpCode.OP_PUSHDATA4:
            if i + 4 > end:
                msg = "truncated OP_PUSHDATA4"
                raise ValueError(msg)
            size = struct.unpack("<I", script[i : i + 4])[0]
            i += 4
        elif op == OpCode.OP_1NEGATE:
            items.append(minimal_script_number(-1))
            continue
        elif OpCode.OP_1 <= op <= OpCode.OP_16:
            items.append(minimal_script_number(op - OpCode.OP_1 + 1))
            continue
        else:
            msg = f"non-push opcode {op:#04x} at offset {i - 1}"
            raise ValueError(msg)
        if i + size > end:
            msg = f"push of {size} bytes overruns script"
            raise ValueError(msg)
        items.append(script[i : i + size])
        i += size
    return items


# ---------------------------------------------------------------------------
# Locking scripts
# ---------------------------------------------------------------------------


def p2pkh_lock_script(pubkey_hash: bytes) -> bytes:
    """Build a P2PKH locking script.

    OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    """
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    return (
        bytes([OpCode.OP_DUP, OpCode.OP_HASH160])
        + push_data(pubkey_hash)
        + bytes([OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG])
    )


def p2pkh_lock_script_from_pubkey(pubkey: bytes) -> bytes:
    return p2pkh_lock_script(hash160(pubkey))


def p2sh_lock_script(script_hash: bytes) -> bytes:
    """Build a P2SH locking script: OP_HASH160 <20 bytes> OP_EQUAL."""
    if len(script_hash) != 20:
        msg = f"script_hash must be 20 bytes, got {len(script_hash)}"
        raise ValueError(msg)
    return bytes([OpCode.OP_HASH160]) + push_data(script_hash) + bytes([OpCode.OP_EQUAL])


def p2sh_lock_script_for(redeem_script: bytes) -> bytes:
    return p2sh_lock_script(hash160(redeem_script))


def detect_script_type(script: bytes) -> ScriptType:
    """Classify a locking script with any token prefix already removed."""
    if len(script) == 0:
        return ScriptType.UNKNOWN
    if (
        len(script) == 25
        and script[0] == OpCode.OP_DUP
        and script[1] == OpCode.OP_HASH160
        and script[2] == 0x14  # push 20 bytes
        and script[23] == OpCode.OP_EQUALVERIFY
        and script[24] == OpCode.OP_CHECKSIG
    ):
        return ScriptType.P2PKH
    if (
        len(script) == 23
        and script[0] == OpCode.OP_HASH160
        and script[1] == 0x14
        and script[22] == OpCode.OP_EQUAL
    ):
        return ScriptType.P2SH
    if script[0] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA
    if len(script) >= 2 and script[0] == OpCode.OP_0 and script[1] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA
    return ScriptType.UNKNOWN


def extract_p2pkh_hash160(script: bytes) -> bytes | None:
    """Return the 20-byte hash of a P2PKH locking script, else None."""
    if detect_script_type(script) != ScriptType.P2PKH:
        return None
    return script[3:23]


def extract_p2pkh_pubkey_from_script_sig(script_sig: bytes) -> bytes | None:
    """Return the pubkey of a ``<sig> <pub33>`` unlocking script, else None."""
    try:
        items = parse_pushes(script_sig)
    except ValueError:
        return None
    if len(items) != 2:
        return None
    pub = items[1]
    if len(pub) != 33 or pub[0] not in (0x02, 0x03):
        return None
    return pub


# ---------------------------------------------------------------------------
# Unlocking scripts
# ---------------------------------------------------------------------------


def p2pkh_unlock_script(signature: bytes, pubkey: bytes) -> bytes:
    """``<sig65> <pub33>``."""
    return push_data(signature) + push_data(pubkey)


# ---------------------------------------------------------------------------
# Electrum
# ---------------------------------------------------------------------------


def scripthash(locking_script: bytes) -> str:
    """Electrum scripthash: reversed SHA-256 of the full locking bytecode."""
    return sha256(locking_script)[::-1].hex()
