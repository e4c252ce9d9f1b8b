"""Key encodings: Base58Check, WIF, BIP32 and stealth paycodes.

- Base58Check encoding / decoding
- WIF private key import and export
- BIP32 private derivation from a BIP39 seed
- Paycode encoding (version byte 0x47) carrying a 33-byte public key
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from bch_stealth.crypto.curve import N, ensure_even_y_priv, int_from_bytes, pub33_to_point, pubkey_from_priv
from bch_stealth.utils.crypto import hash160, hmac_sha512, sha256, sha256d

# ---------------------------------------------------------------------------
# Base58Check encoding / decoding
# ---------------------------------------------------------------------------

_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(payload: bytes) -> str:
    """Encode raw bytes to Base58 (no checksum)."""
    n = int.from_bytes(payload, "big")
    result: list[int] = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(_B58_ALPHABET[remainder])
    for byte in payload:
        if byte != 0:
            break
        result.append(_B58_ALPHABET[0])
    return bytes(reversed(result)).decode("ascii")


def base58_decode(s: str) -> bytes:
    """Decode a Base58 string to raw bytes (no checksum).

    Raises:
        ValueError: On characters outside the Base58 alphabet.
    """
    n = 0
    for char in s:
        idx = _B58_ALPHABET.find(char.encode("ascii", errors="replace"))
        if idx < 0:
            msg = f"invalid base58 character {char!r}"
            raise ValueError(msg)
        n = n * 58 + idx
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    pad_count = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad_count + body


def base58check_encode(payload: bytes) -> str:
    """Encode bytes with a 4-byte hash256 checksum."""
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(s: str) -> bytes:
    """Decode a Base58Check string, verifying the checksum.

    Raises:
        ValueError: If the string is too short or the checksum is wrong.
    """
    raw = base58_decode(s.strip())
    if len(raw) < 5:
        msg = "Base58Check string too short"
        raise ValueError(msg)
    payload, checksum = raw[:-4], raw[-4:]
    if sha256d(payload)[:4] != checksum:
        msg = "Base58Check checksum mismatch"
        raise ValueError(msg)
    return payload


# ---------------------------------------------------------------------------
# WIF
# ---------------------------------------------------------------------------

_MAINNET_WIF = 0x80
_TESTNET_WIF = 0xEF


def privkey_to_wif(privkey: bytes, *, testnet: bool = False) -> str:
    """Encode a 32-byte private key as compressed WIF."""
    version = _TESTNET_WIF if testnet else _MAINNET_WIF
    return base58check_encode(bytes([version]) + privkey + b"\x01")


def wif_to_privkey(wif: str) -> bytes:
    """Decode a WIF string to an even-y normalised 32-byte private key.

    Raises:
        ValueError: On a malformed payload or an unknown version byte.
    """
    payload = base58check_decode(wif)
    if payload[0] not in (_MAINNET_WIF, _TESTNET_WIF):
        msg = f"unknown WIF version byte {payload[0]:#04x}"
        raise ValueError(msg)
    body = payload[1:]
    if len(body) == 33:
        if body[32] != 0x01:
            msg = "WIF compressed flag byte invalid"
            raise ValueError(msg)
        body = body[:32]
    elif len(body) != 32:
        msg = f"Invalid WIF payload length: {len(body)}"
        raise ValueError(msg)
    return ensure_even_y_priv(body)


# ---------------------------------------------------------------------------
# BIP32 (private derivation only)
# ---------------------------------------------------------------------------

_MASTER_HMAC_KEY = b"Bitcoin seed"
HARDENED = 0x80000000


@dataclass(frozen=True)
class ExtendedPrivateKey:
    """A BIP32 extended private key.

    Attributes:
        key: 32-byte private scalar.
        chain_code: 32-byte chain code.
        depth: Derivation depth (0 for master).
        child_index: Index used in derivation.
    """

    key: bytes
    chain_code: bytes
    depth: int = 0
    child_index: int = 0

    def public_key(self) -> bytes:
        return pubkey_from_priv(self.key)

    def fingerprint(self) -> bytes:
        return hash160(self.public_key())[:4]

    def derive_child(self, index: int) -> ExtendedPrivateKey:
        """Derive a child key; ``index >= 0x80000000`` is hardened.

        Raises:
            ValueError: If the derived key is invalid.
        """
        if index >= HARDENED:
            data = b"\x00" + self.key + struct.pack(">I", index)
        else:
            data = self.public_key() + struct.pack(">I", index)
        digest = hmac_sha512(self.chain_code, data)
        il, ir = digest[:32], digest[32:]
        il_int = int_from_bytes(il)
        if il_int >= N:
            msg = "Derived key is invalid (il >= curve order)"
            raise ValueError(msg)
        key_int = (il_int + int_from_bytes(self.key)) % N
        if key_int == 0:
            msg = "Derived key is invalid (key == 0)"
            raise ValueError(msg)
        return ExtendedPrivateKey(
            key=key_int.to_bytes(32, "big"),
            chain_code=ir,
            depth=self.depth + 1,
            child_index=index,
        )

    def derive_path(self, path: str) -> ExtendedPrivateKey:
        """Derive using a path string like ``m/44'/145'/0'/0/0``."""
        key = self
        for part in path.strip().split("/"):
            if part in ("m", "M", ""):
                continue
            hardened = part.endswith(("'", "h", "H"))
            idx = int(part.rstrip("'hH"))
            if hardened:
                idx += HARDENED
            key = key.derive_child(idx)
        return key

    @classmethod
    def from_seed(cls, seed: bytes) -> ExtendedPrivateKey:
        """Create the master key from a 16-64 byte seed.

        Raises:
            ValueError: If the seed length is out of range.
        """
        if not 16 <= len(seed) <= 64:
            msg = f"Seed must be 16-64 bytes, got {len(seed)}"
            raise ValueError(msg)
        digest = hmac_sha512(_MASTER_HMAC_KEY, seed)
        il_int = int_from_bytes(digest[:32])
        if il_int == 0 or il_int >= N:
            msg = "Invalid seed (derived key out of range)"
            raise ValueError(msg)
        return cls(key=digest[:32], chain_code=digest[32:])


# ---------------------------------------------------------------------------
# Paycodes
# ---------------------------------------------------------------------------

PAYCODE_VERSION_BYTE = 0x47
PAYCODE_PAYLOAD_VERSION = 0x01
PAYCODE_CHAINCODE_TAG = b"bch-stealth-paycode-v0"
_PAYCODE_PAD = bytes(13)


def encode_paycode(pub33: bytes) -> str:
    """Encode a compressed public key as a paycode.

    Payload: ``version(1) || flags(1) || pub33 || chaincode32 || pad13``,
    where the chain code is ``sha256(tag || pub33)``.
    """
    pub33_to_point(pub33)
    chain_code = sha256(PAYCODE_CHAINCODE_TAG + pub33)
    payload = bytes([PAYCODE_PAYLOAD_VERSION, 0x00]) + pub33 + chain_code + _PAYCODE_PAD
    return base58check_encode(bytes([PAYCODE_VERSION_BYTE]) + payload)


def paycode_from_priv(priv32: bytes) -> str:
    """Paycode for a private key, after even-y normalisation."""
    return encode_paycode(pubkey_from_priv(ensure_even_y_priv(priv32)))


def decode_paycode(paycode: str) -> bytes:
    """Extract the 33-byte public key from a paycode.

    Raises:
        ValueError: On a bad checksum, version byte, length or public key.
    """
    data = base58check_decode(paycode)
    if data[0] != PAYCODE_VERSION_BYTE:
        msg = f"not a paycode (version byte {data[0]:#04x})"
        raise ValueError(msg)
    payload = data[1:]
    if len(payload) != 2 + 33 + 32 + 13:
        msg = f"paycode payload must be 80 bytes, got {len(payload)}"
        raise ValueError(msg)
    pub33 = payload[2:35]
    pub33_to_point(pub33)
    return pub33
