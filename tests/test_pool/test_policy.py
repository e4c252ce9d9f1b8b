"""Tests for pool policy derivations."""

from __future__ import annotations

import hashlib
import struct

import pytest

from bch_stealth.pool.policy import (
    category_from_funding_txid,
    initial_shard_commitment,
    outpoint_hash,
    pool_id_from_funding_txid,
    select_shard_index,
    shard_index_for_outpoint,
    withdraw_nullifier,
    withdraw_proof_blob,
)

TXID = "00" * 31 + "ff"


def _sha(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class TestOutpointHash:
    def test_txid_bytes_not_reversed(self) -> None:
        assert outpoint_hash(TXID, 3) == _sha(bytes.fromhex(TXID) + struct.pack("<I", 3))

    def test_vout_matters(self) -> None:
        assert outpoint_hash(TXID, 0) != outpoint_hash(TXID, 1)

    def test_rejects_short_txid(self) -> None:
        with pytest.raises(ValueError, match="txid"):
            outpoint_hash("ab", 0)


class TestShardSelection:
    def test_first_byte_mod_count(self) -> None:
        assert select_shard_index(bytes([13]) + bytes(31), 8) == 5
        assert select_shard_index(bytes([13]) + bytes(31), 1) == 0

    def test_outpoint_selection_in_range(self) -> None:
        for vout in range(10):
            assert 0 <= shard_index_for_outpoint(TXID, vout, 4) < 4

    def test_rejects_zero_shards(self) -> None:
        with pytest.raises(ValueError, match="shard_count"):
            select_shard_index(bytes(32), 0)


class TestGenesis:
    def test_category_is_funding_txid(self) -> None:
        assert category_from_funding_txid(TXID) == bytes.fromhex(TXID)

    def test_pool_id_is_20_bytes(self) -> None:
        assert len(pool_id_from_funding_txid(TXID)) == 20

    def test_initial_commitments_distinct(self) -> None:
        pool_id = b"\x01" * 20
        category = bytes.fromhex(TXID)
        commitments = {initial_shard_commitment(pool_id, category, i, 8) for i in range(8)}
        assert len(commitments) == 8

    def test_initial_commitment_layout(self) -> None:
        pool_id = b"\x01" * 20
        category = bytes.fromhex(TXID)
        preimage = pool_id + category + struct.pack("<I", 2) + struct.pack("<I", 4)
        assert initial_shard_commitment(pool_id, category, 2, 4) == _sha(_sha(preimage))

    def test_index_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            initial_shard_commitment(b"\x01" * 20, bytes(32), 4, 4)

    def test_bad_pool_id(self) -> None:
        with pytest.raises(ValueError, match="pool id"):
            initial_shard_commitment(b"\x01" * 19, bytes(32), 0, 4)


class TestWithdrawDerivations:
    def test_nullifier_layout(self) -> None:
        state = b"\x03" * 32
        recv = b"\x04" * 20
        expected = _sha(state + recv + _sha(struct.pack("<I", 50_000)))
        assert withdraw_nullifier(state, recv, 50_000) == expected

    def test_nullifier_binds_receiver_and_amount(self) -> None:
        state = b"\x03" * 32
        base = withdraw_nullifier(state, b"\x04" * 20, 1)
        assert base != withdraw_nullifier(state, b"\x05" * 20, 1)
        assert base != withdraw_nullifier(state, b"\x04" * 20, 2)

    def test_proof_blob(self) -> None:
        n = b"\x09" * 32
        assert withdraw_proof_blob(n) == _sha(n + b"\x02")
