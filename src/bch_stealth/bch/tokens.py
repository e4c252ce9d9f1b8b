"""CashTokens output prefix encoding.

Token-carrying outputs prepend a prefix to the locking bytecode::

    0xef || category32 || bitfield || [varint len || commitment] || [varint amount]

Bitfield flags: 0x40 has-commitment, 0x20 has-nft, 0x10 has-amount; the low
nibble holds the NFT capability.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from io import BytesIO

from bch_stealth.bch.transaction import encode_varint, read_varint

PREFIX_TOKEN = 0xEF

HAS_COMMITMENT = 0x40
HAS_NFT = 0x20
HAS_AMOUNT = 0x10

MAX_COMMITMENT_LENGTH = 40
MAX_FUNGIBLE_AMOUNT = 0x7FFFFFFFFFFFFFFF


class Capability(enum.IntEnum):
    """NFT capability carried in the bitfield's low nibble."""

    NONE = 0
    MUTABLE = 1
    MINTING = 2


@dataclass(frozen=True)
class TokenData:
    """Token contents of a single output.

    Attributes:
        category: 32-byte category id, in the byte order it appears on the wire.
        nft: True when the output carries an NFT.
        capability: NFT capability (must be NONE without an NFT).
        commitment: NFT commitment (0-40 bytes).
        amount: Fungible token amount (0 when absent).
    """

    category: bytes
    nft: bool = False
    capability: Capability = Capability.NONE
    commitment: bytes = b""
    amount: int = 0

    @classmethod
    def mutable_nft(cls, category: bytes, commitment: bytes) -> TokenData:
        return cls(category=category, nft=True, capability=Capability.MUTABLE, commitment=commitment)


def encode_token_prefix(token: TokenData) -> bytes:
    """Serialise *token* as a CashTokens prefix.

    Raises:
        ValueError: If the token violates the prefix encoding rules.
    """
    if len(token.category) != 32:
        msg = f"token category must be 32 bytes, got {len(token.category)}"
        raise ValueError(msg)
    has_commitment = len(token.commitment) > 0
    has_amount = token.amount > 0
    if not token.nft and not has_amount:
        msg = "token must carry an NFT or a fungible amount"
        raise ValueError(msg)
    if has_commitment and not token.nft:
        msg = "commitment requires an NFT"
        raise ValueError(msg)
    if not token.nft and token.capability != Capability.NONE:
        msg = "capability requires an NFT"
        raise ValueError(msg)
    if len(token.commitment) > MAX_COMMITMENT_LENGTH:
        msg = f"commitment must be at most {MAX_COMMITMENT_LENGTH} bytes"
        raise ValueError(msg)
    if token.amount < 0 or token.amount > MAX_FUNGIBLE_AMOUNT:
        msg = "fungible amount out of range"
        raise ValueError(msg)

    bitfield = int(token.capability) & 0x0F
    if has_commitment:
        bitfield |= HAS_COMMITMENT
    if token.nft:
        bitfield |= HAS_NFT
    if has_amount:
        bitfield |= HAS_AMOUNT

    out = bytes([PREFIX_TOKEN]) + token.category + bytes([bitfield])
    if has_commitment:
        out += encode_varint(len(token.commitment)) + token.commitment
    if has_amount:
        out += encode_varint(token.amount)
    return out


def add_token_to_script(token: TokenData | None, locking_script: bytes) -> bytes:
    """Prepend the token prefix for *token* (if any) to *locking_script*."""
    if token is None:
        return locking_script
    return encode_token_prefix(token) + locking_script


def split_token_prefix(script_pubkey: bytes) -> tuple[TokenData | None, bytes, bytes]:
    """Parse an output script into ``(token, prefix_bytes, locking_bytecode)``.

    Scripts without the 0xef marker return ``(None, b"", script_pubkey)``.

    Raises:
        ValueError: If a prefix is present but malformed.
    """
    if not script_pubkey or script_pubkey[0] != PREFIX_TOKEN:
        return None, b"", script_pubkey

    stream = BytesIO(script_pubkey)
    stream.read(1)
    category = stream.read(32)
    bitfield_raw = stream.read(1)
    if len(category) != 32 or len(bitfield_raw) != 1:
        msg = "truncated token prefix"
        raise ValueError(msg)
    bitfield = bitfield_raw[0]
    if bitfield & 0x80:
        msg = f"reserved token bitfield bit set: {bitfield:#04x}"
        raise ValueError(msg)

    has_nft = bool(bitfield & HAS_NFT)
    capability_raw = bitfield & 0x0F
    if capability_raw > Capability.MINTING:
        msg = f"invalid NFT capability {capability_raw}"
        raise ValueError(msg)

    commitment = b""
    if bitfield & HAS_COMMITMENT:
        size = read_varint(stream)
        commitment = stream.read(size)
        if len(commitment) != size or size == 0:
            msg = "invalid token commitment length"
            raise ValueError(msg)
    amount = read_varint(stream) if bitfield & HAS_AMOUNT else 0

    token = TokenData(
        category=category,
        nft=has_nft,
        capability=Capability(capability_raw),
        commitment=commitment,
        amount=amount,
    )
    offset = stream.tell()
    return token, script_pubkey[:offset], script_pubkey[offset:]
