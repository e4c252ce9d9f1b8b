"""Electrum JSON-RPC client over HTTP.

Async client for an Electrum/Fulcrum server exposed through a JSON-RPC over
HTTP endpoint. Methods used:
- blockchain.transaction.get
- blockchain.transaction.broadcast
- blockchain.estimatefee / blockchain.relayfee
- blockchain.scripthash.listunspent
- blockchain.rpa.get_history
- blockchain.headers.get_tip
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, Any

import httpx

from bch_stealth.bch.transaction import Transaction
from bch_stealth.chain.client import HistoryItem, PrevOutput, UnspentOutput
from bch_stealth.errors.chain_errors import BroadcastError, NetworkError
from bch_stealth.errors.stealth_errors import NotFoundError

if TYPE_CHECKING:
    from bch_stealth.config.settings import ElectrumConfig

logger = logging.getLogger(__name__)

# Confirmation target passed to blockchain.estimatefee
_FEE_TARGET_BLOCKS = 2
_SATS_PER_COIN = 100_000_000


class ElectrumClient:
    """Async JSON-RPC client implementing the chain-client contract.

    Usage::

        electrum = ElectrumClient(config)
        await electrum.connect()
        try:
            prev = await electrum.get_prev_output(txid, 0)
        finally:
            await electrum.close()
    """

    def __init__(self, config: ElectrumConfig, *, fee_rate_fallback: float = 1.0) -> None:
        """Initialize the client.

        Args:
            config: Electrum settings (url, timeout, retry policy).
            fee_rate_fallback: sats/byte returned when the server has no estimate.
        """
        self._config = config
        self._fee_rate_fallback = fee_rate_fallback
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Chain client contract
    # ------------------------------------------------------------------

    async def get_raw_tx(self, txid: str) -> str:
        """Raw transaction hex for *txid*."""
        result = await self._call("blockchain.transaction.get", [txid, False])
        if not isinstance(result, str) or not result:
            msg = f"transaction {txid} not found"
            raise NotFoundError(msg)
        return result.strip().lower()

    async def get_prev_output(self, txid: str, vout: int) -> PrevOutput:
        """Value and full locking bytecode of ``txid:vout``.

        Raises:
            NotFoundError: If the transaction has no such output.
        """
        tx = Transaction.from_hex(await self.get_raw_tx(txid))
        if not 0 <= vout < len(tx.outputs):
            msg = f"outpoint {txid}:{vout} does not exist"
            raise NotFoundError(msg)
        out = tx.outputs[vout]
        return PrevOutput(value=out.value, script_pubkey=out.script_pubkey)

    async def get_fee_rate_or_fallback(self) -> float:
        """Fee rate in sats/byte, falling back to relayfee then the configured value."""
        for method, params in (
            ("blockchain.estimatefee", [_FEE_TARGET_BLOCKS]),
            ("blockchain.relayfee", []),
        ):
            try:
                per_kb = await self._call(method, params)
            except NetworkError as exc:
                logger.warning("%s failed: %s", method, exc)
                continue
            if isinstance(per_kb, (int, float)) and per_kb > 0:
                return max(1.0, float(per_kb) * _SATS_PER_COIN / 1000)
        logger.warning("No fee estimate available; using fallback %.2f sat/B", self._fee_rate_fallback)
        return self._fee_rate_fallback

    async def broadcast_raw_tx(self, raw_hex: str) -> str:
        """Broadcast a signed transaction; never retried.

        Raises:
            BroadcastError: If the server rejects the transaction.
        """
        try:
            result = await self._call("blockchain.transaction.broadcast", [raw_hex])
        except BroadcastError:
            raise
        except NetworkError as exc:
            raise BroadcastError(f"broadcast failed: {exc.message}") from exc
        if not isinstance(result, str) or len(result) != 64:
            msg = f"unexpected broadcast response: {result!r}"
            raise BroadcastError(msg)
        logger.info("Broadcast tx %s", result)
        return result.lower()

    async def list_unspent(self, scripthash: str) -> list[UnspentOutput]:
        items = await self._call("blockchain.scripthash.listunspent", [scripthash])
        if not isinstance(items, list):
            msg = f"unexpected listunspent response for {scripthash}"
            raise NetworkError(msg)
        return [
            UnspentOutput(
                txid=str(item["tx_hash"]).lower(),
                vout=int(item["tx_pos"]),
                value=int(item["value"]),
                height=int(item.get("height", 0)),
            )
            for item in items
        ]

    async def is_outpoint_unspent(self, txid: str, vout: int, scripthash: str) -> bool:
        """Check ``txid:vout`` against the scripthash's unspent set.

        Read-only, so transport failures are retried with linear backoff.
        """
        attempts = max(1, self._config.unspent_retry_attempts)
        for attempt in range(attempts):
            try:
                utxos = await self.list_unspent(scripthash)
            except NetworkError as exc:
                if attempt + 1 >= attempts:
                    raise
                delay = self._config.unspent_retry_delay * (attempt + 1)
                logger.warning(
                    "Unspent check for %s:%d failed (attempt %d/%d), retrying in %.1fs: %s",
                    txid,
                    vout,
                    attempt + 1,
                    attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            return any(u.txid == txid.lower() and u.vout == vout for u in utxos)
        return False

    async def get_history_bucket(self, prefix_hex: str, height_lo: int, height_hi: int) -> list[HistoryItem]:
        items = await self._call("blockchain.rpa.get_history", [prefix_hex, height_lo, height_hi])
        if not isinstance(items, list):
            msg = f"unexpected rpa history response for prefix {prefix_hex}"
            raise NetworkError(msg)
        return [HistoryItem(txid=str(item["tx_hash"]).lower(), height=int(item.get("height", 0))) for item in items]

    async def get_tip_height(self) -> int:
        tip = await self._call("blockchain.headers.get_tip", [])
        if isinstance(tip, dict) and "height" in tip:
            return int(tip["height"])
        msg = f"unexpected headers.get_tip response: {tip!r}"
        raise NetworkError(msg)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Issue one JSON-RPC request and return its ``result``.

        Raises:
            NetworkError: On transport failure or an RPC error object.
            BroadcastError: On an RPC error from a broadcast.
        """
        client = self._ensure_connected()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await client.post("/", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"{method} returned invalid JSON") from exc

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if method == "blockchain.transaction.broadcast":
                raise BroadcastError(f"broadcast rejected: {message}")
            raise NetworkError(f"{method} error: {message}")
        if not isinstance(body, dict) or "result" not in body:
            msg = f"{method} returned no result"
            raise NetworkError(msg)
        return body["result"]

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "ElectrumClient is not connected; call connect() first"
            raise RuntimeError(msg)
        return self._client
