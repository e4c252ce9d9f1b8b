"""Pool init: create the shard set from one funding input."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.ops.change import ChangePurpose, derive_self_change, record_change_utxo
from bch_stealth.ops.funding import FundingSource, select_funding_utxo
from bch_stealth.pool.policy import pool_id_from_funding_txid
from bch_stealth.pool.shards import build_init_tx
from bch_stealth.state.helpers import mark_stealth_spent
from bch_stealth.state.models import PoolState, ShardPointer
from bch_stealth.utils.hexutil import hex_to_bytes

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext

logger = logging.getLogger(__name__)


@dataclass
class InitResult:
    txid: str | None
    category_hex: str
    shards: list[ShardPointer] = field(default_factory=list)
    reused: bool = False


def _redeem_script(ctx: PoolOpContext) -> bytes:
    redeem_hex = ctx.config.pool.redeem_script_hex
    if not redeem_hex:
        msg = "pool.redeem_script_hex is not configured; the covenant bytecode is required for init"
        raise ValidationError(msg)
    try:
        return hex_to_bytes(redeem_hex, label="redeem script")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _pool_id(ctx: PoolOpContext, funding_txid: str) -> bytes:
    if ctx.config.pool.pool_id_hex:
        try:
            return hex_to_bytes(ctx.config.pool.pool_id_hex, length=20, label="pool id")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    return pool_id_from_funding_txid(funding_txid)


async def run_init(ctx: PoolOpContext, shards: int | None = None, *, fresh: bool = False) -> InitResult:
    """Create the pool, or return the existing one unless *fresh*.

    Change returns to a stealth self address. State is saved only after the
    init transaction is broadcast.

    Raises:
        ValidationError: On a missing covenant or bad shard count.
        InsufficientFundsError: If no input covers shards, fee and dust.
    """
    state = ctx.load_state()
    if state.initialized and not fresh:
        logger.info("Pool already initialized (%d shards); pass fresh=True to re-init", len(state.shards))
        return InitResult(txid=state.init_txid, category_hex=state.category_hex, shards=list(state.shards), reused=True)

    pool_cfg = ctx.config.pool
    shard_count = shards if shards is not None else pool_cfg.shard_count
    if shard_count <= 0:
        msg = f"shard count must be positive, got {shard_count}"
        raise ValidationError(msg)
    redeem = _redeem_script(ctx)

    need = shard_count * pool_cfg.shard_value + pool_cfg.default_fee + pool_cfg.dust
    funding = await select_funding_utxo(ctx, state, need)
    change = derive_self_change(
        state, ctx.wallet, funding.sign_priv, funding.txid, funding.vout, ChangePurpose.POOL_INIT_CHANGE
    )
    pool_id = _pool_id(ctx, funding.txid)

    built = build_init_tx(
        funding.as_p2pkh_input(),
        change.script_pubkey,
        redeem,
        pool_id20=pool_id,
        shard_count=shard_count,
        shard_value=pool_cfg.shard_value,
        fee=pool_cfg.default_fee,
        dust=pool_cfg.dust,
    )
    txid = await ctx.chain.broadcast_raw_tx(built.raw)
    if txid != built.txid:
        logger.warning("Backend returned txid %s for locally computed %s", txid, built.txid)

    pointers = [
        ShardPointer(index=s.index, txid=txid, vout=s.vout, value_sats=s.value, commitment_hex=s.commitment_hex)
        for s in built.next_shards
    ]
    if fresh and state.initialized:
        logger.warning("Re-initializing pool; previous shards are abandoned in state")
        state = PoolState(
            network=state.network,
            stealth_utxos=state.stealth_utxos,
            deposits=state.deposits,
            withdrawals=state.withdrawals,
            restore_hints=state.restore_hints,
        )
    state.network = ctx.network
    state.pool_id_hex = pool_id.hex()
    state.pool_version = pool_cfg.pool_version
    state.category_hex = built.diagnostics["category_hex"]
    state.redeem_script_hex = redeem.hex()
    state.shard_count = shard_count
    state.shards = pointers
    state.init_txid = txid

    if funding.source == FundingSource.STEALTH:
        mark_stealth_spent(state, funding.txid, funding.vout, txid)
    record_change_utxo(state, change, txid, 0, built.tx.outputs[0].value, owner=ctx.owner)
    ctx.save_state(state)

    logger.info("Pool initialized: txid=%s shards=%d category=%s", txid, shard_count, state.category_hex)
    return InitResult(txid=txid, category_hex=state.category_hex, shards=pointers)
