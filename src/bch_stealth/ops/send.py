"""Plain RPA payment: one funding input, a stealth payment and stealth change.

The first input is ground so the transaction lands in the receiver's scan
bucket. Grinding only touches nonce fields, so the derived outputs (which
depend on the spent outpoint, not on the signature) stay fixed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bch_stealth.bch.keys import decode_paycode
from bch_stealth.bch.script import p2pkh_lock_script
from bch_stealth.bch.sighash import estimate_tx_size, sign_p2pkh_input
from bch_stealth.bch.transaction import Transaction
from bch_stealth.errors.stealth_errors import InsufficientFundsError, ValidationError
from bch_stealth.ops.change import ChangePurpose, derive_self_change, record_change_utxo
from bch_stealth.ops.funding import FundingInput, FundingSource, select_funding_utxo
from bch_stealth.rpa.derivation import derive_one_time_pub_sender
from bch_stealth.rpa.grinder import GrindResult, grind_first_input, target_prefix
from bch_stealth.state.helpers import mark_stealth_spent, upsert_stealth_utxo
from bch_stealth.state.models import RpaContextRecord, StealthUtxoRecord
from bch_stealth.utils.hexutil import hex_to_bytes

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext

logger = logging.getLogger(__name__)

# Derivation index of the payment output under its funding anchor.
PAYMENT_INDEX = 0


@dataclass
class SendResult:
    txid: str
    payment_vout: int
    payment_hash160_hex: str
    value: int
    fee: int
    change: StealthUtxoRecord | None
    grind: GrindResult | None


async def estimate_fee(ctx: PoolOpContext, num_inputs: int, num_outputs: int) -> int:
    rate = await ctx.chain.get_fee_rate_or_fallback()
    return math.ceil(rate * estimate_tx_size(num_inputs, num_outputs))


def sign_single_input(
    ctx: PoolOpContext,
    tx: Transaction,
    funding: FundingInput,
    receiver_scan_pub33: bytes,
) -> tuple[Transaction, GrindResult | None]:
    """Sign input 0, grinding toward the receiver's bucket when enabled."""

    def sign(candidate: Transaction) -> Transaction:
        return sign_p2pkh_input(candidate, 0, funding.sign_priv, funding.script_pubkey, funding.value)

    grind_cfg = ctx.config.grind
    if not grind_cfg.enabled:
        return sign(tx), None

    override = None
    if grind_cfg.prefix_override_hex:
        try:
            override = hex_to_bytes(grind_cfg.prefix_override_hex, label="prefix override")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    try:
        target = target_prefix(receiver_scan_pub33, grind_cfg.prefix_bits, override)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    result = grind_first_input(tx, sign, target, grind_cfg.max_attempts)
    if not result.found:
        logger.warning("Payment not ground into bucket %s; receiver must scan out of band", result.target_hex)
    return result.tx, result


def parse_receiver_paycode(paycode: str) -> bytes:
    try:
        return decode_paycode(paycode)
    except ValueError as exc:
        msg = f"invalid receiver paycode: {exc}"
        raise ValidationError(msg) from exc


async def run_send(ctx: PoolOpContext, receiver_paycode: str, amount: int) -> SendResult:
    """Pay *amount* to a paycode from one funding input.

    Raises:
        ValidationError: On a bad paycode or an amount below dust.
        InsufficientFundsError: If no single input covers amount plus fee.
    """
    if amount < ctx.dust:
        msg = f"amount {amount} is below dust {ctx.dust}"
        raise ValidationError(msg)
    scan_pub = parse_receiver_paycode(receiver_paycode)
    to_self = scan_pub == ctx.wallet.scan_pub

    state = ctx.load_state()
    fee = await estimate_fee(ctx, 1, 2)
    funding = await select_funding_utxo(ctx, state, amount + fee)

    payment = derive_one_time_pub_sender(
        funding.sign_priv,
        scan_pub,
        funding.txid,
        funding.vout,
        PAYMENT_INDEX,
        receiver_spend_pub33=ctx.wallet.spend_pub if to_self else None,
    )
    change = derive_self_change(
        state,
        ctx.wallet,
        funding.sign_priv,
        funding.txid,
        funding.vout,
        ChangePurpose.WALLET_CHANGE,
        avoid={PAYMENT_INDEX} if to_self else (),
    )

    change_value = funding.value - amount - fee
    if change_value < 0:
        msg = "funding input does not cover amount and fee"
        raise InsufficientFundsError(msg, required=amount + fee, available=funding.value)

    tx = Transaction()
    tx.add_input(funding.txid, funding.vout)
    tx.add_output(amount, p2pkh_lock_script(payment.child_hash160))
    has_change = change_value >= ctx.dust
    if has_change:
        tx.add_output(change_value, change.script_pubkey)
    else:
        logger.info("Change of %d sats is below dust; adding it to the fee", change_value)
        fee += change_value

    tx, grind = sign_single_input(ctx, tx, funding, scan_pub)
    txid = await ctx.chain.broadcast_raw_tx(tx.to_hex())

    if funding.source == FundingSource.STEALTH:
        mark_stealth_spent(state, funding.txid, funding.vout, txid)
    change_rec = record_change_utxo(state, change, txid, 1, change_value, owner=ctx.owner) if has_change else None
    if to_self:
        upsert_stealth_utxo(
            state,
            StealthUtxoRecord(
                owner=ctx.owner,
                purpose="wallet_receive",
                txid=txid,
                vout=0,
                value_sats=amount,
                hash160_hex=payment.child_hash160.hex(),
                rpa_context=RpaContextRecord.from_context(payment.context),
            ),
        )
    ctx.save_state(state)

    logger.info("Sent %d sats to %s (txid=%s)", amount, payment.child_hash160.hex(), txid)
    return SendResult(
        txid=txid,
        payment_vout=0,
        payment_hash160_hex=payment.child_hash160.hex(),
        value=amount,
        fee=fee,
        change=change_rec,
        grind=grind,
    )
