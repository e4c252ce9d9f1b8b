"""Receiver-side scan: record stealth outputs found in our prefix bucket."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.rpa.grinder import target_prefix
from bch_stealth.rpa.scan import scan_bucket
from bch_stealth.state.helpers import find_stealth_utxo, upsert_stealth_utxo
from bch_stealth.state.models import RpaContextRecord, StealthUtxoRecord

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext

logger = logging.getLogger(__name__)

SCAN_PURPOSE = "scan_receive"


async def run_scan(
    ctx: PoolOpContext,
    height_lo: int | None = None,
    height_hi: int | None = None,
    *,
    max_index: int | None = None,
) -> list[StealthUtxoRecord]:
    """Scan our bucket over a height window and record new matches.

    The window defaults to the last ``scan.window_blocks`` blocks up to the
    tip. Outputs already in state are left untouched, except that a record
    missing its rpaContext gets the one just found. Returns only the records
    added by this scan.
    """
    wallet = ctx.wallet
    scan_cfg = ctx.config.scan
    if height_hi is None:
        height_hi = await ctx.chain.get_tip_height()
    if height_lo is None:
        height_lo = max(0, height_hi - scan_cfg.window_blocks)
    if height_lo > height_hi:
        msg = f"scan window is empty: {height_lo} > {height_hi}"
        raise ValidationError(msg)

    prefix_hex = target_prefix(wallet.scan_pub, ctx.config.grind.prefix_bits).hex()
    matches = await scan_bucket(
        ctx.chain,
        prefix_hex,
        height_lo,
        height_hi,
        wallet.scan_priv,
        wallet.spend_priv,
        max_index if max_index is not None else scan_cfg.max_role_index,
    )

    state = ctx.load_state()
    added: list[StealthUtxoRecord] = []
    restored = 0
    for match in matches:
        existing = find_stealth_utxo(state, match.txid, match.vout)
        if existing is not None:
            if existing.rpa_context is None:
                existing.rpa_context = RpaContextRecord.from_context(match.context)
                restored += 1
            continue
        added.append(
            upsert_stealth_utxo(
                state,
                StealthUtxoRecord(
                    owner=ctx.owner,
                    purpose=SCAN_PURPOSE,
                    txid=match.txid,
                    vout=match.vout,
                    value_sats=match.value,
                    hash160_hex=match.hash160_hex,
                    rpa_context=RpaContextRecord.from_context(match.context),
                ),
            )
        )
    if added or restored:
        ctx.save_state(state)
    if restored:
        logger.info("Restored rpaContext on %d existing stealth records", restored)
    logger.info(
        "Scan of bucket %s [%d, %d]: %d matches, %d new", prefix_hex, height_lo, height_hi, len(matches), len(added)
    )
    return added
