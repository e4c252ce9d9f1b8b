"""Persisted pool state: pydantic models serialised with camelCase keys.

``PoolState`` is the aggregate root. Every op loads it, mutates it in memory
and saves it back through :class:`~bch_stealth.state.store.FileStateStore`.
Stealth records and deposits are append-only; records are updated in place
(spent flags, import results) but never removed.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bch_stealth.config.settings import FoldVersion, Network
from bch_stealth.rpa.derivation import RpaContext, RpaMode


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class _StateModel(BaseModel):
    """Base for state records: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class RpaContextRecord(_StateModel):
    """Stored derivation inputs; without them an output is unspendable."""

    sender_pub33_hex: str
    prevout_txid_hex: str
    prevout_n: int = Field(ge=0)
    index: int = Field(default=0, ge=0)
    mode: RpaMode = RpaMode.STEALTH_P2PKH

    @classmethod
    def from_context(cls, context: RpaContext) -> RpaContextRecord:
        return cls(
            sender_pub33_hex=context.sender_pub33_hex,
            prevout_txid_hex=context.prevout_txid_hex,
            prevout_n=context.prevout_n,
            index=context.index,
            mode=context.mode,
        )

    def to_context(self) -> RpaContext:
        return RpaContext(
            sender_pub33_hex=self.sender_pub33_hex,
            prevout_txid_hex=self.prevout_txid_hex,
            prevout_n=self.prevout_n,
            index=self.index,
            mode=self.mode,
        )


class StealthUtxoRecord(_StateModel):
    """A stealth output we derived (payment or change)."""

    owner: str
    purpose: str
    txid: str
    vout: int = Field(ge=0)
    value_sats: int = Field(ge=0)
    hash160_hex: str
    # Absent only on records migrated from files that never stored it.
    rpa_context: RpaContextRecord | None = None
    created_at: str = Field(default_factory=utc_now_iso)
    spent_in_txid: str | None = None
    spent_at: str | None = None

    @property
    def spent(self) -> bool:
        return self.spent_in_txid is not None


class DepositKind(enum.StrEnum):
    RPA = "rpa"
    BASE_P2PKH = "base_p2pkh"


class DepositRecord(_StateModel):
    """A staged deposit; ``import_txid`` is set exactly once."""

    txid: str
    vout: int = Field(ge=0)
    value_sats: int = Field(ge=0)
    receiver_hash160_hex: str
    rpa_context: RpaContextRecord | None = None
    deposit_kind: DepositKind = DepositKind.RPA
    warnings: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    import_txid: str | None = None
    imported_into_shard: int | None = None

    @property
    def imported(self) -> bool:
        return self.import_txid is not None


class ShardPointer(_StateModel):
    """Current outpoint and 32-byte commitment of one shard."""

    index: int = Field(ge=0)
    txid: str
    vout: int = Field(ge=0)
    value_sats: int = Field(ge=0)
    commitment_hex: str


class WithdrawalRecord(_StateModel):
    txid: str
    shard_index: int
    amount_sats: int
    receiver_hash160_hex: str
    fee_mode: str
    created_at: str = Field(default_factory=utc_now_iso)
    rpa_context: RpaContextRecord | None = None
    shard_before: ShardPointer | None = None
    shard_after: ShardPointer | None = None


class RestoreHints(_StateModel):
    next_self_change_index: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class PoolState(_StateModel):
    """Whole persisted document (the ``data`` of the file envelope)."""

    network: Network = Network.CHIPNET
    pool_id_hex: str = ""
    pool_version: FoldVersion = FoldVersion.V1_1
    category_hex: str = ""
    redeem_script_hex: str = ""
    shard_count: int = 0
    shards: list[ShardPointer] = Field(default_factory=list)
    stealth_utxos: list[StealthUtxoRecord] = Field(default_factory=list)
    deposits: list[DepositRecord] = Field(default_factory=list)
    withdrawals: list[WithdrawalRecord] = Field(default_factory=list)
    restore_hints: RestoreHints = Field(default_factory=RestoreHints)
    created_at: str = Field(default_factory=utc_now_iso)
    init_txid: str | None = None

    @property
    def initialized(self) -> bool:
        return bool(self.shards and self.category_hex and self.redeem_script_hex)

    def shard(self, index: int) -> ShardPointer | None:
        for pointer in self.shards:
            if pointer.index == index:
                return pointer
        return None
