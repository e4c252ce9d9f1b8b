"""Receiver-side discovery of stealth outputs.

For each P2PKH input of a transaction the sender's public key and the spent
outpoint are known, so the receiver can recompute the shared secret once and
test every P2PKH output against child indices ``0..max_index-1``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bch_stealth.bch.script import extract_p2pkh_hash160, extract_p2pkh_pubkey_from_script_sig
from bch_stealth.bch.tokens import split_token_prefix
from bch_stealth.bch.transaction import Transaction
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.rpa.derivation import RpaContext, ckd_priv, ckd_pub, receiver_shared_secret
from bch_stealth.utils.crypto import hash160

if TYPE_CHECKING:
    from bch_stealth.chain.client import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_INDEX = 16


@dataclass(frozen=True)
class RpaMatch:
    """A transaction output we can spend, with its derivation context."""

    txid: str
    vout: int
    value: int
    hash160_hex: str
    script_pubkey_hex: str
    one_time_priv: bytes
    context: RpaContext


def scan_transaction(
    tx: Transaction,
    scan_priv32: bytes,
    spend_priv32: bytes,
    max_index: int = DEFAULT_MAX_INDEX,
) -> list[RpaMatch]:
    """Find outputs of *tx* derived for our keys."""
    targets: dict[bytes, int] = {}
    for vout, out in enumerate(tx.outputs):
        _, _, locking = split_token_prefix(out.script_pubkey)
        h160 = extract_p2pkh_hash160(locking)
        if h160 is not None:
            targets.setdefault(h160, vout)
    if not targets:
        return []

    spend_pub = pubkey_from_priv(spend_priv32)
    txid = tx.txid()
    matches: list[RpaMatch] = []
    seen: set[int] = set()

    for inp in tx.inputs:
        sender_pub = extract_p2pkh_pubkey_from_script_sig(inp.script_sig)
        if sender_pub is None:
            continue
        try:
            secret = receiver_shared_secret(scan_priv32, sender_pub, inp.txid, inp.vout)
        except ValueError as exc:
            logger.debug("skipping input %s:%d: %s", inp.txid, inp.vout, exc)
            continue
        for index in range(max_index):
            h160 = hash160(ckd_pub(spend_pub, secret, index))
            vout = targets.get(h160)
            if vout is None or vout in seen:
                continue
            seen.add(vout)
            out = tx.outputs[vout]
            context = RpaContext(
                sender_pub33_hex=sender_pub.hex(),
                prevout_txid_hex=inp.txid,
                prevout_n=inp.vout,
                index=index,
            )
            matches.append(
                RpaMatch(
                    txid=txid,
                    vout=vout,
                    value=out.value,
                    hash160_hex=h160.hex(),
                    script_pubkey_hex=out.script_pubkey.hex(),
                    one_time_priv=ckd_priv(spend_priv32, secret, index),
                    context=context,
                )
            )
    return matches


def scan_raw_tx(
    raw_tx_hex: str,
    scan_priv32: bytes,
    spend_priv32: bytes,
    max_index: int = DEFAULT_MAX_INDEX,
) -> list[RpaMatch]:
    return scan_transaction(Transaction.from_hex(raw_tx_hex), scan_priv32, spend_priv32, max_index)


async def scan_bucket(
    chain: ChainClient,
    prefix_hex: str,
    height_lo: int,
    height_hi: int,
    scan_priv32: bytes,
    spend_priv32: bytes,
    max_index: int = DEFAULT_MAX_INDEX,
) -> list[RpaMatch]:
    """Fetch every transaction in an RPA prefix bucket and scan it."""
    history = await chain.get_history_bucket(prefix_hex, height_lo, height_hi)
    logger.info("Scanning %d txs in bucket %s [%d, %d]", len(history), prefix_hex, height_lo, height_hi)
    matches: list[RpaMatch] = []
    seen: set[str] = set()
    for item in history:
        if item.txid in seen:
            continue
        seen.add(item.txid)
        raw = await chain.get_raw_tx(item.txid)
        matches.extend(scan_raw_tx(raw, scan_priv32, spend_priv32, max_index))
    return matches
