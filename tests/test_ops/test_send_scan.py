"""Tests for plain RPA sends and the receiver-side scan."""

from __future__ import annotations

import pytest
from conftest import OTHER_BASE_PRIV, OTHER_SCAN_PRIV, make_config

from bch_stealth.config.settings import GrindConfig
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.errors.stealth_errors import InsufficientFundsError, ValidationError
from bch_stealth.ops.context import PoolOpContext, Wallet
from bch_stealth.ops.scan import SCAN_PURPOSE, run_scan
from bch_stealth.ops.send import estimate_fee, run_send
from bch_stealth.rpa.derivation import derive_from_context
from bch_stealth.rpa.grinder import input_prefix, target_prefix
from bch_stealth.state.helpers import find_stealth_utxo
from bch_stealth.state.store import FileStateStore
from bch_stealth.utils.crypto import hash160


def _other_ctx(tmp_path, other_wallet, chain, **overrides) -> PoolOpContext:
    config = make_config(tmp_path, "other.json", **overrides)
    return PoolOpContext(config=config, wallet=other_wallet, store=FileStateStore(config.state_file), chain=chain)


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


class TestRunSend:
    @pytest.mark.asyncio
    async def test_estimate_fee(self, ctx, chain) -> None:
        assert await estimate_fee(ctx, 1, 2) == 218
        chain.fee_rate = 2.5
        assert await estimate_fee(ctx, 1, 2) == 545

    @pytest.mark.asyncio
    async def test_send_to_other(self, funded_ctx, other_wallet, chain) -> None:
        result = await run_send(funded_ctx, other_wallet.paycode, 40_000)
        assert result.fee == 218
        assert result.grind is None
        tx = chain.broadcasts[-1]
        assert [o.value for o in tx.outputs] == [40_000, 1_000_000 - 40_000 - 218]

        state = funded_ctx.load_state()
        assert find_stealth_utxo(state, result.txid, 0) is None
        assert result.change is not None
        assert state.stealth_utxos == [result.change]
        assert result.change.purpose == "wallet_change"

    @pytest.mark.asyncio
    async def test_send_to_self_records_payment(self, funded_ctx) -> None:
        result = await run_send(funded_ctx, funded_ctx.wallet.paycode, 40_000)
        rec = find_stealth_utxo(funded_ctx.load_state(), result.txid, 0)
        assert rec.purpose == "wallet_receive"
        assert rec.value_sats == 40_000
        priv = derive_from_context(funded_ctx.wallet.scan_priv, funded_ctx.wallet.spend_priv, rec.rpa_context.to_context())
        assert hash160(pubkey_from_priv(priv)).hex() == rec.hash160_hex
        # Payment and change use different derivation indices.
        assert result.change.rpa_context.index != rec.rpa_context.index

    @pytest.mark.asyncio
    async def test_second_send_spends_change(self, funded_ctx, other_wallet, chain) -> None:
        first = await run_send(funded_ctx, other_wallet.paycode, 40_000)
        second = await run_send(funded_ctx, other_wallet.paycode, 10_000)
        tx = chain.broadcasts[-1]
        assert (tx.inputs[0].txid, tx.inputs[0].vout) == (first.txid, 1)
        state = funded_ctx.load_state()
        assert find_stealth_utxo(state, first.txid, 1).spent_in_txid == second.txid

    @pytest.mark.asyncio
    async def test_dust_change_added_to_fee(self, ctx, chain, wallet, other_wallet) -> None:
        chain.fund(wallet.base_script_pubkey, 10_000 + 218 + 100)
        result = await run_send(ctx, other_wallet.paycode, 10_000)
        assert result.change is None
        assert result.fee == 318
        assert len(chain.broadcasts[-1].outputs) == 1

    @pytest.mark.asyncio
    async def test_below_dust(self, funded_ctx, other_wallet) -> None:
        with pytest.raises(ValidationError, match="below dust"):
            await run_send(funded_ctx, other_wallet.paycode, 545)

    @pytest.mark.asyncio
    async def test_bad_paycode(self, funded_ctx) -> None:
        with pytest.raises(ValidationError, match="invalid receiver paycode"):
            await run_send(funded_ctx, "PM8garbage", 10_000)

    @pytest.mark.asyncio
    async def test_insufficient(self, ctx, chain, wallet, other_wallet) -> None:
        chain.fund(wallet.base_script_pubkey, 5_000)
        with pytest.raises(InsufficientFundsError):
            await run_send(ctx, other_wallet.paycode, 10_000)
        assert chain.broadcasts == []

    @pytest.mark.asyncio
    async def test_ground_into_receiver_bucket(self, tmp_path, wallet, other_wallet, chain) -> None:
        config = make_config(tmp_path, grind=GrindConfig(prefix_bits=8, max_attempts=4096))
        ctx = PoolOpContext(config=config, wallet=wallet, store=FileStateStore(config.state_file), chain=chain)
        chain.fund(wallet.base_script_pubkey, 100_000)
        result = await run_send(ctx, other_wallet.paycode, 20_000)
        assert result.grind is not None
        assert result.grind.found
        assert input_prefix(chain.broadcasts[-1], 1) == target_prefix(other_wallet.scan_pub, 8)


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------


class TestRunScan:
    @pytest.mark.asyncio
    async def test_receiver_finds_payment(self, funded_ctx, tmp_path, other_wallet, chain) -> None:
        chain.strict_buckets = False
        sent = await run_send(funded_ctx, other_wallet.paycode, 40_000)
        receiver = _other_ctx(tmp_path, other_wallet, chain)

        added = await run_scan(receiver)
        assert [(r.txid, r.vout, r.value_sats) for r in added] == [(sent.txid, 0, 40_000)]
        assert added[0].purpose == SCAN_PURPOSE
        assert added[0].hash160_hex == sent.payment_hash160_hex

        state = receiver.load_state()
        assert find_stealth_utxo(state, sent.txid, 0) is not None
        priv = derive_from_context(other_wallet.scan_priv, other_wallet.spend_priv, added[0].rpa_context.to_context())
        assert hash160(pubkey_from_priv(priv)).hex() == sent.payment_hash160_hex

    @pytest.mark.asyncio
    async def test_rescan_adds_nothing(self, funded_ctx, tmp_path, other_wallet, chain) -> None:
        chain.strict_buckets = False
        await run_send(funded_ctx, other_wallet.paycode, 40_000)
        receiver = _other_ctx(tmp_path, other_wallet, chain)
        await run_scan(receiver)
        assert await run_scan(receiver) == []
        assert len(receiver.load_state().stealth_utxos) == 1

    @pytest.mark.asyncio
    async def test_receiver_with_configured_spend_key(self, funded_ctx, tmp_path, chain) -> None:
        chain.strict_buckets = False
        receiver_wallet = Wallet.from_keys(OTHER_BASE_PRIV, OTHER_SCAN_PRIV, bytes.fromhex("55" * 32))
        sent = await run_send(funded_ctx, receiver_wallet.paycode, 40_000)
        receiver = _other_ctx(tmp_path, receiver_wallet, chain)

        added = await run_scan(receiver)
        assert [(r.txid, r.vout) for r in added] == [(sent.txid, 0)]
        priv = derive_from_context(
            receiver_wallet.scan_priv, receiver_wallet.spend_priv, added[0].rpa_context.to_context()
        )
        assert hash160(pubkey_from_priv(priv)).hex() == sent.payment_hash160_hex

    @pytest.mark.asyncio
    async def test_rescan_restores_missing_context(self, funded_ctx, tmp_path, other_wallet, chain) -> None:
        chain.strict_buckets = False
        sent = await run_send(funded_ctx, other_wallet.paycode, 40_000)
        receiver = _other_ctx(tmp_path, other_wallet, chain)
        [found] = await run_scan(receiver)

        state = receiver.load_state()
        find_stealth_utxo(state, sent.txid, 0).rpa_context = None
        receiver.save_state(state)

        assert await run_scan(receiver) == []
        restored = find_stealth_utxo(receiver.load_state(), sent.txid, 0)
        assert restored.rpa_context == found.rpa_context

    @pytest.mark.asyncio
    async def test_ground_payment_found_in_bucket(self, tmp_path, wallet, other_wallet, chain) -> None:
        config = make_config(tmp_path, grind=GrindConfig(prefix_bits=8, max_attempts=4096))
        sender = PoolOpContext(config=config, wallet=wallet, store=FileStateStore(config.state_file), chain=chain)
        chain.fund(wallet.base_script_pubkey, 100_000)
        sent = await run_send(sender, other_wallet.paycode, 20_000)

        receiver = _other_ctx(tmp_path, other_wallet, chain, grind=GrindConfig(enabled=False, prefix_bits=8))
        added = await run_scan(receiver)
        assert [(r.txid, r.vout) for r in added] == [(sent.txid, 0)]

    @pytest.mark.asyncio
    async def test_window_excludes_old_blocks(self, funded_ctx, tmp_path, other_wallet, chain) -> None:
        chain.strict_buckets = False
        await run_send(funded_ctx, other_wallet.paycode, 40_000)
        chain.height = 2000
        receiver = _other_ctx(tmp_path, other_wallet, chain)
        assert await run_scan(receiver) == []
        assert len(await run_scan(receiver, 900, 1100)) == 1

    @pytest.mark.asyncio
    async def test_empty_window_rejected(self, ctx) -> None:
        with pytest.raises(ValidationError, match="empty"):
            await run_scan(ctx, 10, 5)

    @pytest.mark.asyncio
    async def test_known_outputs_not_re_added(self, funded_ctx, other_wallet, chain) -> None:
        chain.strict_buckets = False
        await run_send(funded_ctx, other_wallet.paycode, 40_000)
        assert await run_scan(funded_ctx) == []
