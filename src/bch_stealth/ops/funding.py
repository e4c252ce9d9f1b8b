"""Funding selector: pick one spendable input and the key that signs it.

Stealth records are tried largest first. Each candidate is checked against the
chain before its key is re-derived; a candidate already spent on-chain is
marked spent in the state (and saved) before selection moves on. A derived
hash160 that disagrees with the stored record aborts the operation.

When no stealth record is large enough, the largest base P2PKH UTXO of the
wallet's base key is used instead (or first, with ``base_first``).
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bch_stealth.bch.script import extract_p2pkh_hash160, p2pkh_lock_script, scripthash
from bch_stealth.bch.tokens import split_token_prefix
from bch_stealth.config.settings import FundingPreference
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.errors.stealth_errors import DerivationMismatchError, InsufficientFundsError
from bch_stealth.pool.shards import P2pkhInput
from bch_stealth.rpa.derivation import derive_from_context
from bch_stealth.state.helpers import mark_stealth_spent
from bch_stealth.utils.crypto import hash160

if TYPE_CHECKING:
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.state.models import PoolState, StealthUtxoRecord

logger = logging.getLogger(__name__)

# Recorded as ``spentInTxid`` when the spender was not observed directly.
SPENT_BY_UNKNOWN = "unknown"


class FundingSource(enum.StrEnum):
    STEALTH = "stealth"
    BASE = "base"


@dataclass(frozen=True)
class FundingInput:
    """A selected input with everything needed to spend it."""

    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    sign_priv: bytes
    source: FundingSource
    record: StealthUtxoRecord | None = None

    def as_p2pkh_input(self) -> P2pkhInput:
        return P2pkhInput(
            txid=self.txid,
            vout=self.vout,
            value=self.value,
            script_pubkey=self.script_pubkey,
            priv32=self.sign_priv,
        )


def _source_order(preference: FundingPreference) -> tuple[FundingSource, FundingSource]:
    if FundingPreference(preference) == FundingPreference.BASE_FIRST:
        return FundingSource.BASE, FundingSource.STEALTH
    return FundingSource.STEALTH, FundingSource.BASE


async def _select_stealth(
    ctx: PoolOpContext,
    state: PoolState,
    min_sats: int,
    owner: str,
    exclude: Collection[tuple[str, int]],
) -> tuple[FundingInput | None, int]:
    """Return ``(selection, largest_seen_value)`` among stealth records."""
    staged = {(d.txid, d.vout) for d in state.deposits}
    candidates = sorted(
        (
            r
            for r in state.stealth_utxos
            if r.owner == owner
            and not r.spent
            and r.rpa_context is not None
            and (r.txid, r.vout) not in exclude
            and (r.txid, r.vout) not in staged
        ),
        key=lambda r: r.value_sats,
        reverse=True,
    )
    largest = 0
    marked = 0
    try:
        for rec in candidates:
            if rec.value_sats < min_sats:
                largest = max(largest, rec.value_sats)
                break
            locking = p2pkh_lock_script(bytes.fromhex(rec.hash160_hex))
            if not await ctx.chain.is_outpoint_unspent(rec.txid, rec.vout, scripthash(locking)):
                logger.warning("Stealth record %s:%d is spent on-chain; marking it", rec.txid, rec.vout)
                mark_stealth_spent(state, rec.txid, rec.vout, SPENT_BY_UNKNOWN)
                marked += 1
                continue

            priv = derive_from_context(ctx.wallet.scan_priv, ctx.wallet.spend_priv, rec.rpa_context.to_context())
            derived = hash160(pubkey_from_priv(priv)).hex()
            if derived != rec.hash160_hex.lower():
                msg = f"stealth record {rec.txid}:{rec.vout} does not re-derive to its stored hash160"
                raise DerivationMismatchError(msg, expected_hash160=rec.hash160_hex, derived_hash160=derived)

            prev = await ctx.chain.get_prev_output(rec.txid, rec.vout)
            token, _, prev_locking = split_token_prefix(prev.script_pubkey)
            if token is not None or extract_p2pkh_hash160(prev_locking) != bytes.fromhex(rec.hash160_hex):
                msg = f"on-chain output {rec.txid}:{rec.vout} does not match its stealth record"
                raise DerivationMismatchError(msg, expected_hash160=rec.hash160_hex, derived_hash160=derived)

            largest = max(largest, prev.value)
            if prev.value < min_sats:
                continue
            logger.debug("Selected stealth input %s:%d (%d sats)", rec.txid, rec.vout, prev.value)
            return (
                FundingInput(
                    txid=rec.txid,
                    vout=rec.vout,
                    value=prev.value,
                    script_pubkey=prev.script_pubkey,
                    sign_priv=priv,
                    source=FundingSource.STEALTH,
                    record=rec,
                ),
                largest,
            )
    finally:
        if marked:
            # Lazy reconciliation is safe to persist on its own.
            ctx.save_state(state)
    return None, largest


async def _select_base(
    ctx: PoolOpContext,
    min_sats: int,
    exclude: Collection[tuple[str, int]],
) -> tuple[FundingInput | None, int]:
    locking = ctx.wallet.base_script_pubkey
    utxos = [u for u in await ctx.chain.list_unspent(scripthash(locking)) if (u.txid, u.vout) not in exclude]
    if not utxos:
        return None, 0
    best = max(utxos, key=lambda u: u.value)
    if best.value < min_sats:
        return None, best.value
    logger.debug("Selected base input %s:%d (%d sats)", best.txid, best.vout, best.value)
    return (
        FundingInput(
            txid=best.txid,
            vout=best.vout,
            value=best.value,
            script_pubkey=locking,
            sign_priv=ctx.wallet.base_priv,
            source=FundingSource.BASE,
        ),
        best.value,
    )


async def select_funding_utxo(
    ctx: PoolOpContext,
    state: PoolState,
    min_sats: int,
    *,
    owner: str | None = None,
    preference: FundingPreference | None = None,
    exclude: Collection[tuple[str, int]] = (),
) -> FundingInput:
    """Choose exactly one input worth at least *min_sats*.

    Args:
        ctx: Operation context (wallet keys and chain client).
        state: Loaded pool state; stale stealth records are marked in place.
        min_sats: Minimum value the input must carry.
        owner: Owner tag of stealth records to consider (defaults to ``ctx.owner``).
        preference: Source order; defaults to the configured preference.
        exclude: Outpoints that must not be selected.

    Raises:
        DerivationMismatchError: If a stealth record fails re-derivation.
        InsufficientFundsError: If no source has a large enough input.
    """
    owner = owner or ctx.owner
    preference = preference or ctx.config.funding_preference
    largest = 0
    for source in _source_order(preference):
        if source == FundingSource.STEALTH:
            picked, seen = await _select_stealth(ctx, state, min_sats, owner, exclude)
        else:
            picked, seen = await _select_base(ctx, min_sats, exclude)
        if picked is not None:
            return picked
        largest = max(largest, seen)
    msg = "no funding input large enough"
    raise InsufficientFundsError(msg, required=min_sats, available=largest)
