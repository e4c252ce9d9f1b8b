"""Shared test fixtures for the bch-stealth test suite."""

from __future__ import annotations

import itertools

import pytest

from bch_stealth.bch.script import scripthash
from bch_stealth.bch.transaction import Transaction, TxOutput
from bch_stealth.chain.client import HistoryItem, PrevOutput, UnspentOutput
from bch_stealth.errors.chain_errors import BroadcastError
from bch_stealth.errors.stealth_errors import NotFoundError
from bch_stealth.rpa.grinder import input_prefix

# Any non-empty bytecode works: the engine treats the covenant as opaque.
REDEEM_SCRIPT_HEX = "c0d1c0cf8769"

BASE_PRIV = bytes.fromhex("11" * 32)
SCAN_PRIV = bytes.fromhex("22" * 32)
OTHER_BASE_PRIV = bytes.fromhex("33" * 32)
OTHER_SCAN_PRIV = bytes.fromhex("44" * 32)


class FakeChain:
    """In-memory chain implementing the chain-client contract.

    Broadcasts are applied immediately: inputs leave the UTXO set, outputs
    join it, and the tx is filed under its first-input prefix for bucket
    queries at the current tip height.
    """

    def __init__(self, fee_rate: float = 1.0, height: int = 1000) -> None:
        self.fee_rate = fee_rate
        self.height = height
        self.txs: dict[str, Transaction] = {}
        self.utxos: dict[tuple[str, int], TxOutput] = {}
        self.history: list[tuple[str, int]] = []
        self.broadcasts: list[Transaction] = []
        self.strict_buckets = True
        self.unspent_checks = 0
        self._funding_ids = itertools.count(1)

    # -- test helpers -------------------------------------------------------

    def fund(self, script_pubkey: bytes, value: int) -> tuple[str, int]:
        """Create a confirmed output paying *script_pubkey*."""
        n = next(self._funding_ids)
        tx = Transaction()
        tx.add_input(f"{n:064x}", 0)
        tx.add_output(value, script_pubkey)
        txid = tx.txid()
        self.txs[txid] = tx
        self.utxos[(txid, 0)] = tx.outputs[0]
        return txid, 0

    def spend_externally(self, txid: str, vout: int) -> None:
        self.utxos.pop((txid, vout), None)

    # -- chain client -------------------------------------------------------

    async def get_prev_output(self, txid: str, vout: int) -> PrevOutput:
        tx = self.txs.get(txid)
        if tx is None or not 0 <= vout < len(tx.outputs):
            msg = f"outpoint {txid}:{vout} does not exist"
            raise NotFoundError(msg)
        out = tx.outputs[vout]
        return PrevOutput(value=out.value, script_pubkey=out.script_pubkey)

    async def get_raw_tx(self, txid: str) -> str:
        if txid not in self.txs:
            msg = f"transaction {txid} not found"
            raise NotFoundError(msg)
        return self.txs[txid].to_hex()

    async def get_fee_rate_or_fallback(self) -> float:
        return self.fee_rate

    async def broadcast_raw_tx(self, raw_hex: str) -> str:
        tx = Transaction.from_hex(raw_hex)
        for inp in tx.inputs:
            if (inp.txid, inp.vout) not in self.utxos:
                msg = f"broadcast rejected: missing or spent input {inp.txid}:{inp.vout}"
                raise BroadcastError(msg)
        for inp in tx.inputs:
            del self.utxos[(inp.txid, inp.vout)]
        txid = tx.txid()
        for vout, out in enumerate(tx.outputs):
            self.utxos[(txid, vout)] = out
        self.txs[txid] = tx
        self.history.append((txid, self.height))
        self.broadcasts.append(tx)
        return txid

    async def is_outpoint_unspent(self, txid: str, vout: int, scripthash_hex: str) -> bool:
        self.unspent_checks += 1
        out = self.utxos.get((txid, vout))
        return out is not None and scripthash(out.script_pubkey) == scripthash_hex

    async def list_unspent(self, scripthash_hex: str) -> list[UnspentOutput]:
        return [
            UnspentOutput(txid=txid, vout=vout, value=out.value)
            for (txid, vout), out in self.utxos.items()
            if scripthash(out.script_pubkey) == scripthash_hex
        ]

    async def get_history_bucket(self, prefix_hex: str, height_lo: int, height_hi: int) -> list[HistoryItem]:
        width = len(prefix_hex) // 2
        items = []
        for txid, height in self.history:
            if not height_lo <= height <= height_hi:
                continue
            if self.strict_buckets and input_prefix(self.txs[txid], width).hex() != prefix_hex:
                continue
            items.append(HistoryItem(txid=txid, height=height))
        return items

    async def get_tip_height(self) -> int:
        return self.height


# ---------------------------------------------------------------------------
# Config / wallet / context
# ---------------------------------------------------------------------------


def make_config(tmp_path, name: str = "state.json", **overrides):
    from bch_stealth.config.settings import AppConfig, GrindConfig, PoolConfig

    values = {
        "state_file": str(tmp_path / name),
        "pool": PoolConfig(redeem_script_hex=REDEEM_SCRIPT_HEX),
        "grind": GrindConfig(enabled=False),
    }
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def app_config(tmp_path):
    """AppConfig with a temp state file, a dummy covenant and grinding off."""
    return make_config(tmp_path)


@pytest.fixture
def wallet():
    from bch_stealth.ops.context import Wallet

    return Wallet.from_keys(BASE_PRIV, SCAN_PRIV)


@pytest.fixture
def other_wallet():
    from bch_stealth.ops.context import Wallet

    return Wallet.from_keys(OTHER_BASE_PRIV, OTHER_SCAN_PRIV)


@pytest.fixture
def ctx(app_config, wallet, chain):
    """Operation context over the fake chain and a temp state file."""
    from bch_stealth.ops.context import PoolOpContext
    from bch_stealth.state.store import FileStateStore

    return PoolOpContext(
        config=app_config,
        wallet=wallet,
        store=FileStateStore(app_config.state_file),
        chain=chain,
    )


@pytest.fixture
def funded_ctx(ctx, chain, wallet):
    """Context whose base address holds one 1,000,000 sat output."""
    chain.fund(wallet.base_script_pubkey, 1_000_000)
    return ctx


async def build_funded_shard(ctx, *, shards: int = 2, deposit: int = 120_000):
    """Init a pool, deposit to ourselves and import; returns the import result."""
    from bch_stealth.ops.deposit import run_deposit
    from bch_stealth.ops.import_deposit import run_import
    from bch_stealth.ops.pool_init import run_init

    await run_init(ctx, shards)
    await run_deposit(ctx, deposit)
    return await run_import(ctx)
