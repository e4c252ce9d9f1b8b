"""Stealth self-change.

Change goes to a one-time key derived for our own paycode, anchored on the
funding input's outpoint and indexed by a monotonic counter kept in
``restoreHints.nextSelfChangeIndex``.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bch_stealth.bch.script import p2pkh_lock_script
from bch_stealth.rpa.derivation import RpaContext, derive_one_time_pub_sender
from bch_stealth.state.helpers import allocate_change_index, upsert_stealth_utxo
from bch_stealth.state.models import RpaContextRecord, StealthUtxoRecord

if TYPE_CHECKING:
    from bch_stealth.ops.context import Wallet
    from bch_stealth.state.models import PoolState

logger = logging.getLogger(__name__)


class ChangePurpose(enum.StrEnum):
    WALLET_CHANGE = "wallet_change"
    POOL_WITHDRAW_CHANGE = "pool_withdraw_change"
    POOL_IMPORT_CHANGE = "pool_import_change"
    POOL_INIT_CHANGE = "pool_init_change"
    DEPOSIT_CHANGE = "deposit_change"


@dataclass(frozen=True)
class DerivedChange:
    index: int
    hash160: bytes
    script_pubkey: bytes
    context: RpaContext
    purpose: ChangePurpose


def derive_self_change(
    state: PoolState,
    wallet: Wallet,
    sender_priv32: bytes,
    anchor_txid: str,
    anchor_vout: int,
    purpose: ChangePurpose = ChangePurpose.WALLET_CHANGE,
    *,
    avoid: Collection[int] = (),
) -> DerivedChange:
    """Derive the next self-change output for a tx spending ``anchor``.

    *sender_priv32* must be the key that signs the anchor input, so a scan of
    the broadcast transaction finds the change again. Indices in *avoid* are
    already used by other outputs under the same anchor and are skipped.
    """
    index = allocate_change_index(state)
    while index in avoid:
        index = allocate_change_index(state)
    derived = derive_one_time_pub_sender(
        sender_priv32,
        wallet.scan_pub,
        anchor_txid,
        anchor_vout,
        index,
        receiver_spend_pub33=wallet.spend_pub,
    )
    logger.debug("self change %s index=%d anchor=%s:%d", purpose, index, anchor_txid, anchor_vout)
    return DerivedChange(
        index=index,
        hash160=derived.child_hash160,
        script_pubkey=p2pkh_lock_script(derived.child_hash160),
        context=derived.context,
        purpose=ChangePurpose(purpose),
    )


def record_change_utxo(
    state: PoolState,
    change: DerivedChange,
    txid: str,
    vout: int,
    value: int,
    owner: str = "me",
) -> StealthUtxoRecord:
    """Record a broadcast change output as a spendable stealth UTXO."""
    return upsert_stealth_utxo(
        state,
        StealthUtxoRecord(
            owner=owner,
            purpose=str(change.purpose),
            txid=txid,
            vout=vout,
            value_sats=value,
            hash160_hex=change.hash160.hex(),
            rpa_context=RpaContextRecord.from_context(change.context),
        ),
    )
