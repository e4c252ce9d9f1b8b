"""Tests for receiver-side stealth output discovery."""

from __future__ import annotations

import pytest
from conftest import FakeChain

from bch_stealth.bch.script import p2pkh_lock_script
from bch_stealth.bch.sighash import sign_p2pkh_input
from bch_stealth.bch.tokens import TokenData, add_token_to_script
from bch_stealth.bch.transaction import Transaction
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.rpa.derivation import derive_one_time_pub_sender, spend_priv_from_scan_priv
from bch_stealth.rpa.grinder import input_prefix
from bch_stealth.rpa.scan import scan_bucket, scan_raw_tx, scan_transaction
from bch_stealth.utils.crypto import hash160

SENDER_PRIV = bytes.fromhex("33" * 32)
SENDER_SCRIPT = p2pkh_lock_script(hash160(pubkey_from_priv(SENDER_PRIV)))
SCAN_PRIV = bytes.fromhex("22" * 32)
SCAN_PUB = pubkey_from_priv(SCAN_PRIV)
SPEND_PRIV = spend_priv_from_scan_priv(SCAN_PRIV)


def _payment(fund_txid: str, fund_vout: int = 0, *, index: int = 0, decoy_first: bool = False) -> Transaction:
    out = derive_one_time_pub_sender(SENDER_PRIV, SCAN_PUB, fund_txid, fund_vout, index)
    tx = Transaction()
    tx.add_input(fund_txid, fund_vout)
    if decoy_first:
        tx.add_output(1_000, p2pkh_lock_script(b"\x09" * 20))
    tx.add_output(40_000, p2pkh_lock_script(out.child_hash160))
    return sign_p2pkh_input(tx, 0, SENDER_PRIV, SENDER_SCRIPT, 50_000)


class TestScanTransaction:
    def test_finds_payment(self) -> None:
        fund_txid = "12" * 32
        tx = _payment(fund_txid)
        matches = scan_transaction(tx, SCAN_PRIV, SPEND_PRIV)
        assert len(matches) == 1
        match = matches[0]
        assert match.txid == tx.txid()
        assert match.vout == 0
        assert match.value == 40_000
        assert match.context.prevout_txid_hex == fund_txid
        assert match.context.sender_pub33_hex == pubkey_from_priv(SENDER_PRIV).hex()
        assert hash160(pubkey_from_priv(match.one_time_priv)).hex() == match.hash160_hex

    def test_finds_non_zero_index_and_vout(self) -> None:
        tx = _payment("12" * 32, index=5, decoy_first=True)
        matches = scan_transaction(tx, SCAN_PRIV, SPEND_PRIV)
        assert [(m.vout, m.context.index) for m in matches] == [(1, 5)]

    def test_index_outside_window_is_missed(self) -> None:
        tx = _payment("12" * 32, index=5)
        assert scan_transaction(tx, SCAN_PRIV, SPEND_PRIV, max_index=5) == []

    def test_other_receiver_sees_nothing(self) -> None:
        other = bytes.fromhex("44" * 32)
        tx = _payment("12" * 32)
        assert scan_transaction(tx, other, spend_priv_from_scan_priv(other)) == []

    def test_token_prefixed_output(self) -> None:
        fund_txid = "34" * 32
        out = derive_one_time_pub_sender(SENDER_PRIV, SCAN_PUB, fund_txid, 0)
        tx = Transaction()
        tx.add_input(fund_txid, 0)
        token = TokenData.mutable_nft(bytes(32), b"\x01")
        tx.add_output(1_000, add_token_to_script(token, p2pkh_lock_script(out.child_hash160)))
        sign_p2pkh_input(tx, 0, SENDER_PRIV, SENDER_SCRIPT, 2_000)
        assert [m.vout for m in scan_transaction(tx, SCAN_PRIV, SPEND_PRIV)] == [0]

    def test_unsigned_inputs_are_skipped(self) -> None:
        tx = _payment("12" * 32)
        tx.inputs[0].script_sig = b""
        assert scan_transaction(tx, SCAN_PRIV, SPEND_PRIV) == []

    def test_raw_hex_entry_point(self) -> None:
        tx = _payment("56" * 32)
        assert len(scan_raw_tx(tx.to_hex(), SCAN_PRIV, SPEND_PRIV)) == 1


class TestScanBucket:
    @pytest.mark.asyncio
    async def test_scans_bucket_once_per_tx(self) -> None:
        chain = FakeChain()
        fund_txid, fund_vout = chain.fund(SENDER_SCRIPT, 50_000)
        tx = _payment(fund_txid, fund_vout)
        await chain.broadcast_raw_tx(tx.to_hex())
        chain.history.append((tx.txid(), chain.height))

        prefix = input_prefix(tx, 2).hex()
        matches = await scan_bucket(chain, prefix, 0, chain.height, SCAN_PRIV, SPEND_PRIV)
        assert len(matches) == 1
        assert matches[0].txid == tx.txid()

    @pytest.mark.asyncio
    async def test_height_window_excludes(self) -> None:
        chain = FakeChain(height=500)
        fund_txid, _ = chain.fund(SENDER_SCRIPT, 50_000)
        tx = _payment(fund_txid)
        await chain.broadcast_raw_tx(tx.to_hex())
        prefix = input_prefix(tx, 2).hex()
        assert await scan_bucket(chain, prefix, 501, 600, SCAN_PRIV, SPEND_PRIV) == []
