"""Chain client contract shared by the ops layer and its backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class PrevOutput:
    """A spent-output lookup result; ``script_pubkey`` includes any token prefix."""

    value: int
    script_pubkey: bytes


@dataclass(frozen=True)
class UnspentOutput:
    """One entry of a scripthash unspent listing."""

    txid: str
    vout: int
    value: int
    height: int = 0


@dataclass(frozen=True)
class HistoryItem:
    """One transaction from an RPA prefix-bucket history query."""

    txid: str
    height: int = 0


@runtime_checkable
class ChainClient(Protocol):
    """What the pool and stealth operations need from a chain backend."""

    async def get_prev_output(self, txid: str, vout: int) -> PrevOutput: ...

    async def get_raw_tx(self, txid: str) -> str: ...

    async def get_fee_rate_or_fallback(self) -> float: ...

    async def broadcast_raw_tx(self, raw_hex: str) -> str: ...

    async def is_outpoint_unspent(self, txid: str, vout: int, scripthash: str) -> bool: ...

    async def list_unspent(self, scripthash: str) -> list[UnspentOutput]: ...

    async def get_history_bucket(self, prefix_hex: str, height_lo: int, height_hi: int) -> list[HistoryItem]: ...

    async def get_tip_height(self) -> int: ...
