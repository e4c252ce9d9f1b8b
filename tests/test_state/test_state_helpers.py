"""Tests for state models and their in-place mutation helpers."""

from __future__ import annotations

from bch_stealth.state.helpers import (
    allocate_change_index,
    find_deposit,
    find_stealth_utxo,
    latest_unimported_deposit,
    mark_stealth_spent,
    replace_shard,
    upsert_deposit,
    upsert_stealth_utxo,
)
from bch_stealth.state.models import (
    DepositRecord,
    PoolState,
    RpaContextRecord,
    ShardPointer,
    StealthUtxoRecord,
)

TXID_A = "aa" * 32
TXID_B = "bb" * 32
CONTEXT = RpaContextRecord(sender_pub33_hex="02" + "11" * 32, prevout_txid_hex="cc" * 32, prevout_n=0)


def _utxo(txid: str = TXID_A, vout: int = 0, value: int = 1000) -> StealthUtxoRecord:
    return StealthUtxoRecord(
        owner="me",
        purpose="wallet_receive",
        txid=txid,
        vout=vout,
        value_sats=value,
        hash160_hex="00" * 20,
        rpa_context=CONTEXT,
    )


def _deposit(txid: str = TXID_A, vout: int = 0, value: int = 5000) -> DepositRecord:
    return DepositRecord(txid=txid, vout=vout, value_sats=value, receiver_hash160_hex="00" * 20)


class TestModels:
    def test_camel_case_on_disk(self) -> None:
        data = _utxo().to_json_dict()
        assert data["valueSats"] == 1000
        assert data["rpaContext"]["senderPub33Hex"] == CONTEXT.sender_pub33_hex
        assert "spentInTxid" not in data

    def test_parses_camel_case(self) -> None:
        rec = StealthUtxoRecord.model_validate(_utxo().to_json_dict())
        assert rec.value_sats == 1000
        assert rec.rpa_context.to_context().prevout_txid_hex == "cc" * 32

    def test_initialized_requires_covenant(self) -> None:
        state = PoolState(shards=[ShardPointer(index=0, txid=TXID_A, vout=1, value_sats=2000, commitment_hex="00")])
        assert not state.initialized
        state.category_hex = TXID_A
        state.redeem_script_hex = "51"
        assert state.initialized

    def test_shard_lookup(self) -> None:
        pointer = ShardPointer(index=3, txid=TXID_A, vout=1, value_sats=2000, commitment_hex="00")
        state = PoolState(shards=[pointer])
        assert state.shard(3) == pointer
        assert state.shard(0) is None


class TestStealthHelpers:
    def test_upsert_appends_then_merges(self) -> None:
        state = PoolState()
        upsert_stealth_utxo(state, _utxo())
        upsert_stealth_utxo(state, _utxo(value=2000))
        assert len(state.stealth_utxos) == 1
        assert state.stealth_utxos[0].value_sats == 2000

    def test_upsert_normalises_txid(self) -> None:
        state = PoolState()
        upsert_stealth_utxo(state, _utxo(txid=TXID_A.upper()))
        assert state.stealth_utxos[0].txid == TXID_A
        assert find_stealth_utxo(state, TXID_A.upper(), 0) is not None

    def test_mark_spent_keeps_first_spender(self) -> None:
        state = PoolState()
        upsert_stealth_utxo(state, _utxo())
        assert mark_stealth_spent(state, TXID_A, 0, TXID_B)
        assert mark_stealth_spent(state, TXID_A, 0, "cc" * 32)
        rec = find_stealth_utxo(state, TXID_A, 0)
        assert rec is not None
        assert rec.spent
        assert rec.spent_in_txid == TXID_B
        assert rec.spent_at is not None

    def test_mark_spent_unknown_outpoint(self) -> None:
        assert not mark_stealth_spent(PoolState(), TXID_A, 0, TXID_B)


class TestDepositHelpers:
    def test_upsert_preserves_import_result(self) -> None:
        state = PoolState()
        dep = upsert_deposit(state, _deposit())
        dep.import_txid = TXID_B
        dep.imported_into_shard = 2
        again = _deposit()
        again.import_txid = "dd" * 32
        upsert_deposit(state, again)
        found = find_deposit(state, TXID_A, 0)
        assert found is not None
        assert found.import_txid == TXID_B
        assert found.imported_into_shard == 2

    def test_latest_unimported(self) -> None:
        state = PoolState()
        upsert_deposit(state, _deposit(TXID_A, value=1000))
        upsert_deposit(state, _deposit(TXID_B, value=2000))
        assert latest_unimported_deposit(state).txid == TXID_B
        assert latest_unimported_deposit(state, amount_sats=1000).txid == TXID_A
        state.deposits[1].import_txid = "dd" * 32
        assert latest_unimported_deposit(state).txid == TXID_A
        assert latest_unimported_deposit(state, amount_sats=3000) is None


class TestShardAndHints:
    def test_replace_shard_returns_old(self) -> None:
        old = ShardPointer(index=0, txid=TXID_A, vout=1, value_sats=2000, commitment_hex="00")
        state = PoolState(shards=[old])
        new = ShardPointer(index=0, txid=TXID_B, vout=0, value_sats=3000, commitment_hex="11")
        assert replace_shard(state, new) == old
        assert state.shards == [new]

    def test_replace_shard_inserts_sorted(self) -> None:
        state = PoolState(shards=[ShardPointer(index=2, txid=TXID_A, vout=1, value_sats=1, commitment_hex="")])
        assert replace_shard(state, ShardPointer(index=0, txid=TXID_B, vout=0, value_sats=1, commitment_hex="")) is None
        assert [s.index for s in state.shards] == [0, 2]

    def test_change_index_is_monotonic(self) -> None:
        state = PoolState()
        assert [allocate_change_index(state) for _ in range(3)] == [0, 1, 2]
        assert state.restore_hints.next_self_change_index == 3
