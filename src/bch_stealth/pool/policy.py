"""Pool policy constants and deterministic derivations."""

from __future__ import annotations

from bch_stealth.utils.crypto import hash160, hash256, sha256
from bch_stealth.utils.hexutil import hex_to_bytes, u32le

DUST = 546
SHARD_VALUE = 2000
DEFAULT_FEE = 2000


def outpoint_hash(txid_hex: str, vout: int) -> bytes:
    """Note hash of an outpoint: ``sha256(txid_bytes || u32le(vout))``.

    The txid bytes are taken in the hex order supplied, not reversed.
    """
    return sha256(hex_to_bytes(txid_hex, length=32, label="txid") + u32le(vout))


def select_shard_index(note_hash32: bytes, shard_count: int) -> int:
    if shard_count <= 0:
        msg = "shard_count must be > 0"
        raise ValueError(msg)
    return note_hash32[0] % shard_count


def shard_index_for_outpoint(txid_hex: str, vout: int, shard_count: int) -> int:
    return select_shard_index(outpoint_hash(txid_hex, vout), shard_count)


def category_from_funding_txid(txid_hex: str) -> bytes:
    """Token category of a pool: the genesis (funding) txid bytes as given."""
    return hex_to_bytes(txid_hex, length=32, label="funding txid")


def pool_id_from_funding_txid(txid_hex: str) -> bytes:
    """Fallback 20-byte pool id when none is configured."""
    return hash160(hex_to_bytes(txid_hex, length=32, label="funding txid"))


def initial_shard_commitment(pool_id20: bytes, category32: bytes, index: int, shard_count: int) -> bytes:
    """``hash256(poolId || category || u32le(i) || u32le(count))``."""
    if len(pool_id20) != 20:
        msg = f"pool id must be 20 bytes, got {len(pool_id20)}"
        raise ValueError(msg)
    if len(category32) != 32:
        msg = f"category must be 32 bytes, got {len(category32)}"
        raise ValueError(msg)
    if not 0 <= index < shard_count:
        msg = f"shard index {index} out of range for {shard_count} shards"
        raise ValueError(msg)
    return hash256(pool_id20 + category32 + u32le(index) + u32le(shard_count))


def withdraw_nullifier(state_in32: bytes, receiver_hash160: bytes, amount: int) -> bytes:
    """``sha256(stateIn || receiverH160 || sha256(u32le(amount)))``."""
    return sha256(state_in32 + receiver_hash160 + sha256(u32le(amount & 0xFFFFFFFF)))


def withdraw_proof_blob(nullifier32: bytes) -> bytes:
    return sha256(nullifier32 + b"\x02")
