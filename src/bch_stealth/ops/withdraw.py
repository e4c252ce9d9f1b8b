"""Withdraw: pay out of a shard, folding a nullifier into its commitment.

The payment goes to a stealth key for a paycode, or to a transparent hash160
when one is supplied. In ``from-shard`` mode the covenant input is the only
input, so the payment is anchored on the shard outpoint under the base key.
It cannot be found by a bucket scan and its derivation context is kept in
the withdrawal record. In ``external`` mode the fee input anchors both the
payment and the change, which keeps them scannable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.ops.change import ChangePurpose, DerivedChange, derive_self_change, record_change_utxo
from bch_stealth.ops.covenant import load_shard_input, pool_params, shard_pointer
from bch_stealth.ops.funding import FundingSource, select_funding_utxo
from bch_stealth.ops.send import PAYMENT_INDEX, parse_receiver_paycode
from bch_stealth.pool.shards import FeeMode, build_withdraw_tx
from bch_stealth.rpa.derivation import derive_one_time_pub_sender
from bch_stealth.state.helpers import mark_stealth_spent, replace_shard, upsert_stealth_utxo
from bch_stealth.state.models import RpaContextRecord, ShardPointer, StealthUtxoRecord, WithdrawalRecord
from bch_stealth.utils.hexutil import hex_to_bytes

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.ops.funding import FundingInput

logger = logging.getLogger(__name__)


@dataclass
class WithdrawResult:
    txid: str
    shard_index: int
    amount: int
    payment: int
    receiver_hash160_hex: str
    fee_mode: FeeMode
    shard: ShardPointer
    change: StealthUtxoRecord | None = None
    diagnostics: dict = field(default_factory=dict)


async def run_withdraw(
    ctx: PoolOpContext,
    shard_index: int,
    amount: int,
    *,
    receiver_paycode: str | None = None,
    receiver_hash160_hex: str | None = None,
    fee_mode: FeeMode = FeeMode.FROM_SHARD,
) -> WithdrawResult:
    """Withdraw *amount* from shard *shard_index*.

    The shard shrinks by *amount* in both fee modes. With no receiver given
    the payment goes to our own paycode.

    Raises:
        ValidationError: On conflicting receivers, a bad hash160 or paycode,
            or a bad shard index.
        InsufficientFundsError: If the payment, remainder or change would be
            below dust, or no fee input is available in external mode.
    """
    fee_mode = FeeMode(fee_mode)
    if receiver_paycode and receiver_hash160_hex:
        msg = "pass a receiver paycode or a receiver hash160, not both"
        raise ValidationError(msg)
    if amount <= 0:
        msg = f"withdraw amount must be positive, got {amount}"
        raise ValidationError(msg)

    wallet = ctx.wallet
    transparent: bytes | None = None
    scan_pub = wallet.scan_pub
    if receiver_hash160_hex:
        try:
            transparent = hex_to_bytes(receiver_hash160_hex, length=20, label="receiver hash160")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    elif receiver_paycode:
        scan_pub = parse_receiver_paycode(receiver_paycode)
    to_self = transparent is None and scan_pub == wallet.scan_pub

    state = ctx.load_state()
    params = pool_params(ctx, state)
    pointer = shard_pointer(state, shard_index)
    shard_in = await load_shard_input(ctx, params, pointer)

    fee_input: FundingInput | None = None
    change: DerivedChange | None = None
    if fee_mode == FeeMode.EXTERNAL:
        fee_input = await select_funding_utxo(
            ctx, state, ctx.fee + ctx.dust, exclude={(pointer.txid, pointer.vout)}
        )
        anchor_priv, anchor_txid, anchor_vout = fee_input.sign_priv, fee_input.txid, fee_input.vout
    else:
        anchor_priv, anchor_txid, anchor_vout = wallet.base_priv, pointer.txid, pointer.vout

    context: RpaContextRecord | None = None
    if transparent is not None:
        receiver_hash160 = transparent
    else:
        payment_key = derive_one_time_pub_sender(
            anchor_priv,
            scan_pub,
            anchor_txid,
            anchor_vout,
            PAYMENT_INDEX,
            receiver_spend_pub33=wallet.spend_pub if to_self else None,
        )
        receiver_hash160 = payment_key.child_hash160
        context = RpaContextRecord.from_context(payment_key.context)

    if fee_input is not None:
        change = derive_self_change(
            state,
            wallet,
            fee_input.sign_priv,
            fee_input.txid,
            fee_input.vout,
            ChangePurpose.POOL_WITHDRAW_CHANGE,
            avoid={PAYMENT_INDEX} if to_self else (),
        )

    built = build_withdraw_tx(
        params,
        shard_index,
        shard_in,
        receiver_hash160,
        amount,
        fee_mode=fee_mode,
        fee_input=fee_input.as_p2pkh_input() if fee_input is not None else None,
        change_script=change.script_pubkey if change is not None else None,
        fee=ctx.fee,
        dust=ctx.dust,
    )
    txid = await ctx.chain.broadcast_raw_tx(built.raw)
    if txid != built.txid:
        logger.warning("Backend returned txid %s for locally computed %s", txid, built.txid)

    update = built.next_shards[0]
    new_pointer = ShardPointer(
        index=shard_index,
        txid=txid,
        vout=update.vout,
        value_sats=update.value,
        commitment_hex=update.commitment_hex,
    )
    replace_shard(state, new_pointer)
    state.withdrawals.append(
        WithdrawalRecord(
            txid=txid,
            shard_index=shard_index,
            amount_sats=amount,
            receiver_hash160_hex=receiver_hash160.hex(),
            fee_mode=str(fee_mode),
            rpa_context=context,
            shard_before=pointer,
            shard_after=new_pointer,
        )
    )
    payment_value = built.diagnostics["payment"]
    if to_self and context is not None:
        upsert_stealth_utxo(
            state,
            StealthUtxoRecord(
                owner=ctx.owner,
                purpose="pool_withdraw",
                txid=txid,
                vout=1,
                value_sats=payment_value,
                hash160_hex=receiver_hash160.hex(),
                rpa_context=context,
            ),
        )
    change_rec = None
    if fee_input is not None and change is not None:
        if fee_input.source == FundingSource.STEALTH:
            mark_stealth_spent(state, fee_input.txid, fee_input.vout, txid)
        change_rec = record_change_utxo(state, change, txid, 2, built.diagnostics["change"], owner=ctx.owner)
    ctx.save_state(state)

    logger.info(
        "Withdrew %d sats from shard %d (txid=%s, mode=%s, remainder=%d)",
        amount,
        shard_index,
        txid,
        fee_mode,
        update.value,
    )
    return WithdrawResult(
        txid=txid,
        shard_index=shard_index,
        amount=amount,
        payment=payment_value,
        receiver_hash160_hex=receiver_hash160.hex(),
        fee_mode=fee_mode,
        shard=new_pointer,
        change=change_rec,
        diagnostics=built.diagnostics,
    )
