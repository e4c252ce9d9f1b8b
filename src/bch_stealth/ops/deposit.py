"""Deposit staging.

A deposit is an ordinary payment that is recorded as a :class:`DepositRecord`
so a later import can fold it into a shard. Staging never touches the
covenant. Deposits made with :func:`run_deposit` are staged straight away;
payments found some other way (scan, an earlier send) are promoted with
:func:`stage_from_outpoint`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bch_stealth.bch.script import p2pkh_lock_script
from bch_stealth.bch.transaction import Transaction
from bch_stealth.errors.definitions import ErrDepositMissingContext
from bch_stealth.errors.stealth_errors import InsufficientFundsError, NotFoundError, ValidationError
from bch_stealth.ops.change import ChangePurpose, derive_self_change, record_change_utxo
from bch_stealth.ops.funding import FundingSource, select_funding_utxo
from bch_stealth.ops.send import PAYMENT_INDEX, estimate_fee, parse_receiver_paycode, sign_single_input
from bch_stealth.rpa.derivation import derive_one_time_pub_sender
from bch_stealth.state.helpers import find_deposit, find_stealth_utxo, mark_stealth_spent, upsert_deposit
from bch_stealth.state.models import DepositKind, DepositRecord, RpaContextRecord, StealthUtxoRecord
from bch_stealth.utils.hexutil import normalize_txid

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.rpa.grinder import GrindResult

logger = logging.getLogger(__name__)

WARN_BASE_DEPOSIT = "BASE_P2PKH_DEPOSIT_NOT_STEALTH"
WARN_BASE_LINKABLE = "BASE_P2PKH_DEPOSIT_LINKABLE_TO_WALLET"
WARN_PROMOTED = "PROMOTED_FROM_STEALTH_UTXO"


@dataclass
class DepositResult:
    txid: str
    vout: int
    value: int
    fee: int
    receiver_hash160_hex: str
    deposit: DepositRecord | None
    change: StealthUtxoRecord | None
    grind: GrindResult | None

    @property
    def staged(self) -> bool:
        return self.deposit is not None


async def run_deposit(
    ctx: PoolOpContext,
    amount: int,
    receiver_paycode: str | None = None,
    *,
    deposit_kind: DepositKind = DepositKind.RPA,
) -> DepositResult:
    """Pay *amount* into a deposit output and stage it.

    The payment goes to a one-time key derived for *receiver_paycode* (our own
    paycode by default). Only deposits to ourselves are staged; a foreign
    receiver stages the payment on their side once they find it.
    ``DepositKind.BASE_P2PKH`` pays our base address instead, which is
    importable but not private.

    Raises:
        ValidationError: On an amount below dust, a bad paycode, or a base
            deposit to a foreign receiver.
        InsufficientFundsError: If no single input covers amount plus fee.
    """
    deposit_kind = DepositKind(deposit_kind)
    if amount < ctx.dust:
        msg = f"deposit amount {amount} is below dust {ctx.dust}"
        raise ValidationError(msg)

    wallet = ctx.wallet
    scan_pub = parse_receiver_paycode(receiver_paycode) if receiver_paycode else wallet.scan_pub
    to_self = scan_pub == wallet.scan_pub
    if deposit_kind == DepositKind.BASE_P2PKH and not to_self:
        msg = "base P2PKH deposits can only pay our own base address"
        raise ValidationError(msg)

    state = ctx.load_state()
    fee = await estimate_fee(ctx, 1, 2)
    funding = await select_funding_utxo(ctx, state, amount + fee)

    rpa_context: RpaContextRecord | None = None
    warnings: list[str] = []
    if deposit_kind == DepositKind.RPA:
        payment = derive_one_time_pub_sender(
            funding.sign_priv,
            scan_pub,
            funding.txid,
            funding.vout,
            PAYMENT_INDEX,
            receiver_spend_pub33=wallet.spend_pub if to_self else None,
        )
        receiver_hash160 = payment.child_hash160
        rpa_context = RpaContextRecord.from_context(payment.context)
    else:
        receiver_hash160 = wallet.base_hash160
        warnings = [WARN_BASE_DEPOSIT, WARN_BASE_LINKABLE]
        logger.warning("Depositing to the base address; this deposit is linkable to the wallet")

    change = derive_self_change(
        state,
        wallet,
        funding.sign_priv,
        funding.txid,
        funding.vout,
        ChangePurpose.DEPOSIT_CHANGE,
        avoid={PAYMENT_INDEX} if to_self and deposit_kind == DepositKind.RPA else (),
    )
    change_value = funding.value - amount - fee
    if change_value < 0:
        msg = "funding input does not cover deposit and fee"
        raise InsufficientFundsError(msg, required=amount + fee, available=funding.value)

    tx = Transaction()
    tx.add_input(funding.txid, funding.vout)
    tx.add_output(amount, p2pkh_lock_script(receiver_hash160))
    has_change = change_value >= ctx.dust
    if has_change:
        tx.add_output(change_value, change.script_pubkey)
    else:
        fee += change_value

    tx, grind = sign_single_input(ctx, tx, funding, scan_pub)
    txid = await ctx.chain.broadcast_raw_tx(tx.to_hex())

    if funding.source == FundingSource.STEALTH:
        mark_stealth_spent(state, funding.txid, funding.vout, txid)
    change_rec = record_change_utxo(state, change, txid, 1, change_value, owner=ctx.owner) if has_change else None
    deposit: DepositRecord | None = None
    if to_self:
        deposit = upsert_deposit(
            state,
            DepositRecord(
                txid=txid,
                vout=0,
                value_sats=amount,
                receiver_hash160_hex=receiver_hash160.hex(),
                rpa_context=rpa_context,
                deposit_kind=deposit_kind,
                warnings=warnings,
            ),
        )
    ctx.save_state(state)

    logger.info("Deposit %s:0 (%d sats, %s) broadcast; staged=%s", txid, amount, deposit_kind, deposit is not None)
    return DepositResult(
        txid=txid,
        vout=0,
        value=amount,
        fee=fee,
        receiver_hash160_hex=receiver_hash160.hex(),
        deposit=deposit,
        change=change_rec,
        grind=grind,
    )


async def stage_from_outpoint(ctx: PoolOpContext, txid: str, vout: int) -> DepositRecord:
    """Promote a known stealth UTXO into a staged deposit.

    Re-staging the same outpoint updates the record in place and keeps any
    import already recorded for it.

    Raises:
        ValidationError: On a malformed outpoint, an already spent record, or
            a record with no stored rpaContext.
        NotFoundError: If no stealth record exists for the outpoint.
    """
    try:
        txid = normalize_txid(txid)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if vout < 0:
        msg = f"vout must be non-negative, got {vout}"
        raise ValidationError(msg)

    state = ctx.load_state()
    existing = find_deposit(state, txid, vout)
    if existing is not None and existing.imported:
        logger.info("Deposit %s:%d already imported in %s", txid, vout, existing.import_txid)
        return existing

    rec = find_stealth_utxo(state, txid, vout)
    if rec is None:
        msg = f"no stealth UTXO recorded for {txid}:{vout}; scan for it first"
        raise NotFoundError(msg)
    if rec.spent:
        msg = f"stealth UTXO {txid}:{vout} is already spent in {rec.spent_in_txid}"
        raise ValidationError(msg)
    if rec.rpa_context is None:
        raise ErrDepositMissingContext

    warnings = list(existing.warnings) if existing is not None else []
    if WARN_PROMOTED not in warnings:
        warnings.append(WARN_PROMOTED)
    deposit = upsert_deposit(
        state,
        DepositRecord(
            txid=txid,
            vout=vout,
            value_sats=rec.value_sats,
            receiver_hash160_hex=rec.hash160_hex,
            rpa_context=rec.rpa_context,
            deposit_kind=DepositKind.RPA,
            warnings=warnings,
        ),
    )
    ctx.save_state(state)
    logger.info("Staged %s:%d (%d sats) from stealth record", txid, vout, rec.value_sats)
    return deposit
