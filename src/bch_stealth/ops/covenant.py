"""Shared plumbing for ops that spend a shard."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bch_stealth.errors.definitions import ErrPoolMissingCovenant, ErrPoolNotInitialized
from bch_stealth.errors.stealth_errors import NotFoundError, ValidationError
from bch_stealth.pool.shards import CovenantInput, PoolParams

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.state.models import PoolState, ShardPointer

logger = logging.getLogger(__name__)


def require_pool(state: PoolState) -> None:
    """Raise unless *state* describes an initialised pool."""
    if not state.shards:
        raise ErrPoolNotInitialized
    if not state.category_hex or not state.redeem_script_hex:
        raise ErrPoolMissingCovenant


def pool_params(ctx: PoolOpContext, state: PoolState) -> PoolParams:
    require_pool(state)
    try:
        category = bytes.fromhex(state.category_hex)
        redeem = bytes.fromhex(state.redeem_script_hex)
    except ValueError as exc:
        msg = f"pool state holds malformed covenant hex: {exc}"
        raise ValidationError(msg) from exc
    return PoolParams(
        category32=category,
        redeem_script=redeem,
        version=state.pool_version,
        category_mode=ctx.config.pool.category_mode,
        cap_byte=ctx.config.pool.cap_byte,
    )


def shard_pointer(state: PoolState, index: int) -> ShardPointer:
    if not 0 <= index < state.shard_count:
        msg = f"shard index {index} out of range for {state.shard_count} shards"
        raise ValidationError(msg)
    pointer = state.shard(index)
    if pointer is None:
        msg = f"shard {index} has no pointer in state"
        raise NotFoundError(msg)
    return pointer


async def load_shard_input(ctx: PoolOpContext, params: PoolParams, pointer: ShardPointer) -> CovenantInput:
    """Resolve a shard pointer against the chain into a spendable input.

    Raises:
        ValidationError: If the on-chain output does not carry the recorded
            commitment under this pool's covenant.
    """
    commitment = bytes.fromhex(pointer.commitment_hex)
    prev = await ctx.chain.get_prev_output(pointer.txid, pointer.vout)
    expected = params.shard_locking_script(commitment)
    if prev.script_pubkey != expected:
        msg = f"shard {pointer.index} at {pointer.txid}:{pointer.vout} does not match its recorded commitment"
        raise ValidationError(msg)
    if prev.value != pointer.value_sats:
        logger.warning(
            "Shard %d value on chain (%d) differs from state (%d); using chain value",
            pointer.index,
            prev.value,
            pointer.value_sats,
        )
    return CovenantInput(
        txid=pointer.txid,
        vout=pointer.vout,
        value=prev.value,
        script_pubkey=prev.script_pubkey,
        commitment32=commitment,
        signer_priv32=ctx.wallet.base_priv,
    )
