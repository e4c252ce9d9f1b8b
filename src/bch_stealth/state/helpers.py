"""In-place mutations of :class:`PoolState` used by the ops layer."""

from __future__ import annotations

from bch_stealth.state.models import (
    DepositRecord,
    PoolState,
    ShardPointer,
    StealthUtxoRecord,
    utc_now_iso,
)
from bch_stealth.utils.hexutil import normalize_txid


def _same_outpoint(txid: str, vout: int, other_txid: str, other_vout: int) -> bool:
    return txid.lower() == other_txid.lower() and vout == other_vout


def find_stealth_utxo(state: PoolState, txid: str, vout: int) -> StealthUtxoRecord | None:
    for rec in state.stealth_utxos:
        if _same_outpoint(rec.txid, rec.vout, txid, vout):
            return rec
    return None


def upsert_stealth_utxo(state: PoolState, record: StealthUtxoRecord) -> StealthUtxoRecord:
    """Insert *record*, or merge it over the existing one for the same outpoint."""
    record.txid = normalize_txid(record.txid)
    for i, existing in enumerate(state.stealth_utxos):
        if _same_outpoint(existing.txid, existing.vout, record.txid, record.vout):
            update = record.model_dump(exclude_unset=True)
            merged = StealthUtxoRecord.model_validate({**existing.model_dump(), **update})
            state.stealth_utxos[i] = merged
            return merged
    state.stealth_utxos.append(record)
    return record


def mark_stealth_spent(state: PoolState, txid: str, vout: int, spent_in_txid: str) -> bool:
    """Flag a stealth record spent. Returns False if there is no such record.

    A record already marked spent keeps its first ``spent_in_txid``.
    """
    rec = find_stealth_utxo(state, txid, vout)
    if rec is None:
        return False
    if rec.spent_in_txid is None:
        rec.spent_in_txid = spent_in_txid.lower()
        rec.spent_at = utc_now_iso()
    return True


def find_deposit(state: PoolState, txid: str, vout: int) -> DepositRecord | None:
    for dep in state.deposits:
        if _same_outpoint(dep.txid, dep.vout, txid, vout):
            return dep
    return None


def upsert_deposit(state: PoolState, record: DepositRecord) -> DepositRecord:
    """Insert or update a deposit, preserving import results already recorded."""
    record.txid = normalize_txid(record.txid)
    for i, existing in enumerate(state.deposits):
        if _same_outpoint(existing.txid, existing.vout, record.txid, record.vout):
            update = record.model_dump(exclude_unset=True)
            if existing.import_txid is not None:
                update.pop("import_txid", None)
                update.pop("imported_into_shard", None)
            merged = DepositRecord.model_validate({**existing.model_dump(), **update})
            state.deposits[i] = merged
            return merged
    state.deposits.append(record)
    return record


def latest_unimported_deposit(state: PoolState, amount_sats: int | None = None) -> DepositRecord | None:
    """Most recently staged deposit without an import, optionally by value."""
    for dep in reversed(state.deposits):
        if dep.imported:
            continue
        if amount_sats is not None and dep.value_sats != amount_sats:
            continue
        return dep
    return None


def allocate_change_index(state: PoolState) -> int:
    """Hand out the next self-change derivation index (monotonic)."""
    index = state.restore_hints.next_self_change_index
    state.restore_hints.next_self_change_index = index + 1
    return index


def replace_shard(state: PoolState, pointer: ShardPointer) -> ShardPointer | None:
    """Swap in the new pointer for ``pointer.index``; returns the old one."""
    for i, existing in enumerate(state.shards):
        if existing.index == pointer.index:
            state.shards[i] = pointer
            return existing
    state.shards.append(pointer)
    state.shards.sort(key=lambda s: s.index)
    return None
