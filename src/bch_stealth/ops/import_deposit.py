"""Import: fold a staged deposit into a shard."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bch_stealth.bch.script import extract_p2pkh_hash160, p2pkh_lock_script, scripthash
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.errors.definitions import ErrDepositMissingContext, ErrNoStagedDeposit
from bch_stealth.errors.stealth_errors import DerivationMismatchError, NotFoundError, ValidationError
from bch_stealth.ops.covenant import load_shard_input, pool_params, shard_pointer
from bch_stealth.pool.policy import outpoint_hash, select_shard_index
from bch_stealth.pool.shards import P2pkhInput, build_import_tx
from bch_stealth.rpa.derivation import derive_from_context
from bch_stealth.state.helpers import find_deposit, latest_unimported_deposit, mark_stealth_spent, replace_shard
from bch_stealth.state.models import DepositKind, ShardPointer
from bch_stealth.utils.crypto import hash160
from bch_stealth.utils.hexutil import normalize_txid

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.state.models import DepositRecord, PoolState

logger = logging.getLogger(__name__)

WARN_BASE_IMPORT = "BASE_P2PKH_IMPORT"


@dataclass
class ImportResult:
    txid: str
    shard_index: int
    deposit_txid: str
    deposit_vout: int
    shard: ShardPointer | None
    reused: bool = False
    diagnostics: dict = field(default_factory=dict)


def _pick_deposit(state: PoolState, txid: str | None, vout: int | None) -> DepositRecord:
    if txid is None:
        if vout is not None:
            msg = "a deposit vout needs a txid"
            raise ValidationError(msg)
        deposit = latest_unimported_deposit(state)
        if deposit is None:
            raise ErrNoStagedDeposit
        return deposit
    try:
        txid = normalize_txid(txid)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    vout = 0 if vout is None else vout
    deposit = find_deposit(state, txid, vout)
    if deposit is None:
        msg = f"deposit {txid}:{vout} is not staged; stage it before importing"
        raise NotFoundError(msg)
    return deposit


def _deposit_key(ctx: PoolOpContext, deposit: DepositRecord, allow_base: bool) -> bytes:
    wallet = ctx.wallet
    if deposit.deposit_kind == DepositKind.BASE_P2PKH:
        if not allow_base:
            msg = f"deposit {deposit.txid}:{deposit.vout} pays a base address; pass allow_base to import it"
            raise ValidationError(msg)
        if deposit.receiver_hash160_hex.lower() != wallet.base_hash160.hex():
            msg = "base deposit does not pay this wallet's base key"
            raise ValidationError(msg)
        logger.warning("Importing base P2PKH deposit %s:%d; it is linkable to the wallet", deposit.txid, deposit.vout)
        return wallet.base_priv

    if deposit.rpa_context is None:
        raise ErrDepositMissingContext
    priv = derive_from_context(wallet.scan_priv, wallet.spend_priv, deposit.rpa_context.to_context())
    derived = hash160(pubkey_from_priv(priv)).hex()
    if derived != deposit.receiver_hash160_hex.lower():
        msg = f"deposit {deposit.txid}:{deposit.vout} does not re-derive to its stored hash160"
        raise DerivationMismatchError(msg, expected_hash160=deposit.receiver_hash160_hex, derived_hash160=derived)
    return priv


async def run_import(
    ctx: PoolOpContext,
    txid: str | None = None,
    vout: int | None = None,
    shard_index: int | None = None,
    *,
    fresh: bool = False,
    allow_base: bool = False,
) -> ImportResult:
    """Import a staged deposit into a shard.

    Without an explicit outpoint the most recently staged, un-imported
    deposit is used. The shard is ``noteHash[0] % shardCount`` unless
    *shard_index* forces one. Importing an already imported deposit returns
    the recorded result unless *fresh* is set.

    Raises:
        NotFoundError: If the outpoint is not staged, or nothing is staged.
        ValidationError: On a spent deposit, a bad shard index, or a base
            deposit without *allow_base*.
        DerivationMismatchError: If the deposit key does not re-derive.
    """
    state = ctx.load_state()
    params = pool_params(ctx, state)
    deposit = _pick_deposit(state, txid, vout)

    if deposit.imported and not fresh:
        index = deposit.imported_into_shard if deposit.imported_into_shard is not None else -1
        logger.info("Deposit %s:%d already imported in %s", deposit.txid, deposit.vout, deposit.import_txid)
        return ImportResult(
            txid=deposit.import_txid or "",
            shard_index=index,
            deposit_txid=deposit.txid,
            deposit_vout=deposit.vout,
            shard=state.shard(index),
            reused=True,
        )

    note_hash = outpoint_hash(deposit.txid, deposit.vout)
    index = select_shard_index(note_hash, state.shard_count) if shard_index is None else shard_index
    pointer = shard_pointer(state, index)

    deposit_lock = p2pkh_lock_script(bytes.fromhex(deposit.receiver_hash160_hex))
    if not await ctx.chain.is_outpoint_unspent(deposit.txid, deposit.vout, scripthash(deposit_lock)):
        msg = f"deposit {deposit.txid}:{deposit.vout} is already spent on-chain"
        raise ValidationError(msg)

    priv = _deposit_key(ctx, deposit, allow_base)
    deposit_prev = await ctx.chain.get_prev_output(deposit.txid, deposit.vout)
    if extract_p2pkh_hash160(deposit_prev.script_pubkey) != bytes.fromhex(deposit.receiver_hash160_hex):
        msg = f"on-chain output {deposit.txid}:{deposit.vout} does not pay the staged hash160"
        raise ValidationError(msg)
    shard_in = await load_shard_input(ctx, params, pointer)

    built = build_import_tx(
        params,
        index,
        shard_in,
        P2pkhInput(
            txid=deposit.txid,
            vout=deposit.vout,
            value=deposit_prev.value,
            script_pubkey=deposit_prev.script_pubkey,
            priv32=priv,
        ),
        fee=ctx.fee,
        dust=ctx.dust,
    )
    broadcast_txid = await ctx.chain.broadcast_raw_tx(built.raw)
    if broadcast_txid != built.txid:
        logger.warning("Backend returned txid %s for locally computed %s", broadcast_txid, built.txid)

    update = built.next_shards[0]
    new_pointer = ShardPointer(
        index=index,
        txid=broadcast_txid,
        vout=update.vout,
        value_sats=update.value,
        commitment_hex=update.commitment_hex,
    )
    replace_shard(state, new_pointer)
    deposit.import_txid = broadcast_txid
    deposit.imported_into_shard = index
    if deposit.deposit_kind == DepositKind.BASE_P2PKH and WARN_BASE_IMPORT not in deposit.warnings:
        deposit.warnings.append(WARN_BASE_IMPORT)
    mark_stealth_spent(state, deposit.txid, deposit.vout, broadcast_txid)
    ctx.save_state(state)

    logger.info(
        "Imported %s:%d into shard %d (txid=%s, value=%d)",
        deposit.txid,
        deposit.vout,
        index,
        broadcast_txid,
        update.value,
    )
    return ImportResult(
        txid=broadcast_txid,
        shard_index=index,
        deposit_txid=deposit.txid,
        deposit_vout=deposit.vout,
        shard=new_pointer,
        diagnostics=built.diagnostics,
    )
