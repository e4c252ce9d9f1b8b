"""Transaction serialisation for Bitcoin Cash.

Provides pure-Python transaction encoding and decoding:
- VarInt encoding/decoding
- TxInput / TxOutput / Transaction data classes (txids in display hex)
- Raw hex/bytes round trip and txid computation
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass, field
from io import BytesIO

from bch_stealth.utils.crypto import sha256d
from bch_stealth.utils.hexutil import normalize_txid

# ---------------------------------------------------------------------------
# VarInt encoding / decoding
# ---------------------------------------------------------------------------


def encode_varint(n: int) -> bytes:
    """Encode an integer as a Bitcoin-style variable-length integer."""
    if n < 0:
        msg = "varint must be non-negative"
        raise ValueError(msg)
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def read_varint(stream: BytesIO) -> int:
    """Read a Bitcoin-style variable-length integer from a byte stream."""
    first = stream.read(1)
    if len(first) == 0:
        msg = "Unexpected end of stream reading varint"
        raise ValueError(msg)
    n = first[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        return struct.unpack("<H", _read_exact(stream, 2))[0]
    if n == 0xFE:
        return struct.unpack("<I", _read_exact(stream, 4))[0]
    return struct.unpack("<Q", _read_exact(stream, 8))[0]


def _read_exact(stream: BytesIO, n: int) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        msg = f"Unexpected end of stream (wanted {n} bytes, got {len(data)})"
        raise ValueError(msg)
    return data


# Default sequence: 0xFFFFFFFF (final)
DEFAULT_SEQUENCE = 0xFFFFFFFF

# BCH transactions built here are version 2
DEFAULT_VERSION = 2


# ---------------------------------------------------------------------------
# TxInput
# ---------------------------------------------------------------------------


@dataclass
class TxInput:
    """A transaction input.

    Attributes:
        txid: Previous transaction id in display (big-endian) hex.
        vout: Index of the output in the previous transaction.
        script_sig: Unlocking bytecode.
        sequence: Sequence number (default 0xFFFFFFFF).
    """

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE

    def __post_init__(self) -> None:
        self.txid = normalize_txid(self.txid)

    def outpoint_bytes(self) -> bytes:
        """Wire-order outpoint: reversed txid bytes followed by vout LE."""
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)

    def serialize(self) -> bytes:
        """Serialize the input to bytes."""
        result = self.outpoint_bytes()
        result += encode_varint(len(self.script_sig))
        result += self.script_sig
        result += struct.pack("<I", self.sequence & 0xFFFFFFFF)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        """Deserialize a transaction input from a byte stream."""
        prev_hash = _read_exact(stream, 32)
        vout = struct.unpack("<I", _read_exact(stream, 4))[0]
        script_len = read_varint(stream)
        script_sig = _read_exact(stream, script_len)
        sequence = struct.unpack("<I", _read_exact(stream, 4))[0]
        return cls(txid=prev_hash[::-1].hex(), vout=vout, script_sig=script_sig, sequence=sequence)


# ---------------------------------------------------------------------------
# TxOutput
# ---------------------------------------------------------------------------


@dataclass
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in satoshis.
        script_pubkey: Full locking bytecode, including any CashTokens prefix.
    """

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        """Serialize the output to bytes."""
        if self.value < 0:
            msg = f"output value must be non-negative, got {self.value}"
            raise ValueError(msg)
        result = struct.pack("<Q", self.value)
        result += encode_varint(len(self.script_pubkey))
        result += self.script_pubkey
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxOutput:
        """Deserialize a transaction output from a byte stream."""
        value = struct.unpack("<Q", _read_exact(stream, 8))[0]
        script_len = read_varint(stream)
        script_pubkey = _read_exact(stream, script_len)
        return cls(value=value, script_pubkey=script_pubkey)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A Bitcoin Cash transaction.

    Attributes:
        version: Transaction version (default 2).
        inputs: List of transaction inputs.
        outputs: List of transaction outputs.
        locktime: Transaction locktime (default 0).
    """

    version: int = DEFAULT_VERSION
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    def serialize(self) -> bytes:
        """Serialize the transaction to raw bytes."""
        result = struct.pack("<I", self.version & 0xFFFFFFFF)
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        result += struct.pack("<I", self.locktime & 0xFFFFFFFF)
        return result

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.serialize().hex()

    @classmethod
    def deserialize(cls, stream: BytesIO) -> Transaction:
        """Deserialize a transaction from a byte stream."""
        version = struct.unpack("<I", _read_exact(stream, 4))[0]
        n_inputs = read_varint(stream)
        inputs = [TxInput.deserialize(stream) for _ in range(n_inputs)]
        n_outputs = read_varint(stream)
        outputs = [TxOutput.deserialize(stream) for _ in range(n_outputs)]
        locktime = struct.unpack("<I", _read_exact(stream, 4))[0]
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        """Deserialize a transaction from a hex string."""
        return cls.from_bytes(bytes.fromhex(hex_str.strip()))

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """Deserialize a transaction from raw bytes.

        Raises:
            ValueError: If the data is truncated or has trailing bytes.
        """
        stream = BytesIO(data)
        tx = cls.deserialize(stream)
        if stream.read(1):
            msg = "trailing bytes after transaction"
            raise ValueError(msg)
        return tx

    def txid(self) -> str:
        """Compute the transaction ID (double-SHA256, reversed, hex)."""
        return sha256d(self.serialize())[::-1].hex()

    @property
    def size(self) -> int:
        """Transaction size in bytes."""
        return len(self.serialize())

    def clone(self) -> Transaction:
        """Deep copy, so candidates can be mutated without touching the original."""
        return copy.deepcopy(self)

    def add_input(self, txid: str, vout: int, sequence: int = DEFAULT_SEQUENCE) -> TxInput:
        """Add an unsigned input to the transaction."""
        inp = TxInput(txid=txid, vout=vout, sequence=sequence)
        self.inputs.append(inp)
        return inp

    def add_output(self, value: int, script_pubkey: bytes) -> TxOutput:
        """Add an output to the transaction."""
        out = TxOutput(value=value, script_pubkey=script_pubkey)
        self.outputs.append(out)
        return out
