"""Versioned, one-time migrations of the state file envelope.

Version history:

- 0: bare legacy pool file (no envelope), shard and record ``value`` fields.
- 1: ``{schemaVersion: 1, updatedAt, data}`` envelope with the pool under
  ``data.pool.state`` and history arrays under ``data.pool.deposits``,
  ``data.pool.withdrawals`` and ``data.stealth.utxos``; legacy field names.
- 2: ``data`` is the canonical :class:`~bch_stealth.state.models.PoolState`.

Migrations run in order at load time. Code outside this module only ever sees
the current layout.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.state.models import utc_now_iso

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2

Document = dict[str, Any]

_POOL_VERSIONS = {"v0": "v0", "v1": "v1", "v1_1": "v1.1", "v1.1": "v1.1"}


def schema_version_of(doc: Document) -> int:
    if "schemaVersion" in doc and "data" in doc:
        version = doc["schemaVersion"]
        if not isinstance(version, int):
            msg = f"invalid schemaVersion: {version!r}"
            raise ValidationError(msg)
        return version
    return 0


# ---------------------------------------------------------------------------
# 0 -> 1
# ---------------------------------------------------------------------------


def _v0_to_v1(doc: Document) -> Document:
    legacy = copy.deepcopy(doc)
    data: Document = {"pool": {}, "stealth": {}}
    for key, bucket, name in (
        ("deposits", "pool", "deposits"),
        ("withdrawals", "pool", "withdrawals"),
        ("stealthUtxos", "stealth", "utxos"),
    ):
        if key in legacy:
            data[bucket][name] = legacy.pop(key)
    data["pool"]["state"] = legacy
    return {"schemaVersion": 1, "updatedAt": utc_now_iso(), "data": data}


# ---------------------------------------------------------------------------
# 1 -> 2
# ---------------------------------------------------------------------------


def _sats(record: Document, *keys: str) -> int:
    for key in keys:
        if record.get(key) is not None:
            return int(record[key])
    return 0


def _rpa_context(ctx: Any) -> Document | None:
    if not isinstance(ctx, dict):
        return None
    return {
        "senderPub33Hex": str(ctx.get("senderPub33Hex", "")).lower(),
        "prevoutTxidHex": str(ctx.get("prevoutTxidHex") or ctx.get("prevoutHashHex") or "").lower(),
        "prevoutN": int(ctx.get("prevoutN", 0)),
        "index": int(ctx.get("index", 0)),
        **({"mode": ctx["mode"]} if "mode" in ctx else {}),
    }


def _shard(raw: Document, fallback_index: int) -> Document:
    return {
        "index": int(raw.get("index", fallback_index)),
        "txid": str(raw.get("txid", "")).lower(),
        "vout": int(raw.get("vout", 0)),
        "valueSats": _sats(raw, "valueSats", "value"),
        "commitmentHex": str(raw.get("commitmentHex", "")).lower(),
    }


def _stealth_utxo(raw: Document) -> Document:
    out = {
        "owner": str(raw.get("owner", "")),
        "purpose": str(raw.get("purpose", "")),
        "txid": str(raw.get("txid", "")).lower(),
        "vout": int(raw.get("vout", 0)),
        "valueSats": _sats(raw, "valueSats", "value"),
        "hash160Hex": str(raw.get("hash160Hex", "")).lower(),
        "createdAt": raw.get("createdAt") or utc_now_iso(),
    }
    ctx = _rpa_context(raw.get("rpaContext"))
    if ctx is not None:
        out["rpaContext"] = ctx
    for key in ("spentInTxid", "spentAt"):
        if raw.get(key):
            out[key] = raw[key]
    return out


def _deposit(raw: Document) -> Document:
    out = {
        "txid": str(raw.get("txid", "")).lower(),
        "vout": int(raw.get("vout", 0)),
        "valueSats": _sats(raw, "valueSats", "value"),
        "receiverHash160Hex": str(raw.get("receiverHash160Hex") or raw.get("receiverRpaHash160Hex") or "").lower(),
        "depositKind": raw.get("depositKind") or "rpa",
        "warnings": list(raw.get("warnings") or []),
        "createdAt": raw.get("createdAt") or utc_now_iso(),
    }
    ctx = _rpa_context(raw.get("rpaContext"))
    if ctx is not None:
        out["rpaContext"] = ctx
    for key in ("importTxid", "importedIntoShard"):
        if raw.get(key) is not None:
            out[key] = raw[key]
    return out


def _withdrawal(raw: Document) -> Document:
    out = {
        "txid": str(raw.get("txid", "")).lower(),
        "shardIndex": int(raw.get("shardIndex", 0)),
        "amountSats": _sats(raw, "amountSats", "amount"),
        "receiverHash160Hex": str(raw.get("receiverHash160Hex") or raw.get("receiverRpaHash160Hex") or "").lower(),
        # Older pools always paid withdraw fees from a separate input.
        "feeMode": raw.get("feeMode") or "external",
        "createdAt": raw.get("createdAt") or utc_now_iso(),
    }
    ctx = _rpa_context(raw.get("rpaContext"))
    if ctx is not None:
        out["rpaContext"] = ctx
    return out


def _v1_to_v2(doc: Document) -> Document:
    data = doc.get("data") or {}
    pool = data.get("pool") or {}
    state = pool.get("state") or {}
    stealth = data.get("stealth") or {}

    shards = [_shard(s, i) for i, s in enumerate(state.get("shards") or [])]
    utxos = [_stealth_utxo(r) for r in state.get("stealthUtxos") or stealth.get("utxos") or []]
    orphaned = sum(1 for u in utxos if "rpaContext" not in u)
    if orphaned:
        logger.warning("Keeping %d stealth records without an rpaContext; rescan to make them spendable", orphaned)
    pool_id = str(state.get("poolIdHex") or "")
    canonical = {
        "network": state.get("network") or "chipnet",
        "poolIdHex": "" if pool_id == "unknown" else pool_id.lower(),
        "poolVersion": _POOL_VERSIONS.get(str(state.get("poolVersion", "")), "v1.1"),
        "categoryHex": str(state.get("categoryHex") or "").lower(),
        "redeemScriptHex": str(state.get("redeemScriptHex") or "").lower(),
        "shardCount": int(state.get("shardCount") or len(shards)),
        "shards": shards,
        "stealthUtxos": utxos,
        "deposits": [_deposit(d) for d in state.get("deposits") or pool.get("deposits") or []],
        "withdrawals": [_withdrawal(w) for w in state.get("withdrawals") or pool.get("withdrawals") or []],
        "restoreHints": state.get("restoreHints") or {"nextSelfChangeIndex": 0},
        "createdAt": state.get("createdAt") or utc_now_iso(),
    }
    init_txid = state.get("initTxid") or state.get("txid") or (pool.get("meta") or {}).get("lastTxid")
    if init_txid:
        canonical["initTxid"] = str(init_txid).lower()
    return {"schemaVersion": 2, "updatedAt": utc_now_iso(), "data": canonical}


MIGRATIONS: dict[int, Callable[[Document], Document]] = {
    0: _v0_to_v1,
    1: _v1_to_v2,
}


def migrate(doc: Document) -> tuple[Document, bool]:
    """Bring a raw state document to :data:`CURRENT_SCHEMA_VERSION`.

    Returns:
        ``(envelope, migrated)`` where *migrated* tells whether any step ran.

    Raises:
        ValidationError: If the document is from a newer, unknown version.
    """
    version = schema_version_of(doc)
    if version > CURRENT_SCHEMA_VERSION:
        msg = f"unsupported state schemaVersion {version} (newest known is {CURRENT_SCHEMA_VERSION})"
        raise ValidationError(msg)

    migrated = False
    while version < CURRENT_SCHEMA_VERSION:
        logger.info("Migrating state schema v%d -> v%d", version, version + 1)
        doc = MIGRATIONS[version](doc)
        version = schema_version_of(doc)
        migrated = True
    return doc, migrated
