"""Explicit per-invocation context for pool operations.

A :class:`PoolOpContext` is built once by the caller (CLI or tests) and passed
into every op. It owns no global state: wallet keys, config, the state store
and the chain client all travel on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING

from mnemonic import Mnemonic

from bch_stealth.bch.keys import ExtendedPrivateKey, encode_paycode
from bch_stealth.bch.script import p2pkh_lock_script
from bch_stealth.crypto.curve import ensure_even_y_priv, priv_to_int, pubkey_from_priv
from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.rpa.derivation import spend_priv_from_scan_priv
from bch_stealth.utils.crypto import hash160
from bch_stealth.utils.hexutil import hex_to_bytes

if TYPE_CHECKING:
    from bch_stealth.chain.client import ChainClient
    from bch_stealth.config.settings import AppConfig, Network, WalletConfig
    from bch_stealth.state.models import PoolState
    from bch_stealth.state.store import FileStateStore

logger = logging.getLogger(__name__)

# BIP44 coin type 145 (BCH): external chain for the base key, chain 2 for scan.
BASE_KEY_PATH = "m/44'/145'/0'/0/0"
SCAN_KEY_PATH = "m/44'/145'/0'/2/0"


def _parse_priv(value: str, label: str) -> bytes:
    try:
        priv = hex_to_bytes(value, length=32, label=label)
        priv_to_int(priv)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return priv


@dataclass(frozen=True)
class Wallet:
    """Key material for one operator.

    ``base_priv`` signs base P2PKH outputs and covenant spends; ``scan_priv``
    finds stealth payments and ``spend_priv`` spends them. Base and scan keys
    are normalised to even-y public keys. The spend key is always the scan key
    plus the paycode tweak, since senders only see the scan public key.
    """

    base_priv: bytes
    scan_priv: bytes
    spend_priv: bytes

    @cached_property
    def base_pub(self) -> bytes:
        return pubkey_from_priv(self.base_priv)

    @cached_property
    def base_hash160(self) -> bytes:
        return hash160(self.base_pub)

    @property
    def base_script_pubkey(self) -> bytes:
        return p2pkh_lock_script(self.base_hash160)

    @cached_property
    def scan_pub(self) -> bytes:
        return pubkey_from_priv(self.scan_priv)

    @cached_property
    def spend_pub(self) -> bytes:
        return pubkey_from_priv(self.spend_priv)

    @property
    def paycode(self) -> str:
        return encode_paycode(self.scan_pub)

    @classmethod
    def from_keys(cls, base_priv: bytes, scan_priv: bytes, spend_priv: bytes | None = None) -> Wallet:
        scan = ensure_even_y_priv(scan_priv)
        spend = spend_priv_from_scan_priv(scan)
        if spend_priv and spend_priv != spend:
            logger.warning("Configured spend key does not match the scan key; using the derived spend key")
        return cls(base_priv=ensure_even_y_priv(base_priv), scan_priv=scan, spend_priv=spend)

    @classmethod
    def from_mnemonic(cls, words: str, passphrase: str = "") -> Wallet:
        """Derive base and scan keys from a BIP39 mnemonic.

        Raises:
            ValidationError: If the mnemonic checksum is invalid.
        """
        m = Mnemonic("english")
        normalized = " ".join(words.split())
        if not m.check(normalized):
            msg = "invalid mnemonic"
            raise ValidationError(msg)
        master = ExtendedPrivateKey.from_seed(m.to_seed(normalized, passphrase=passphrase))
        return cls.from_keys(
            master.derive_path(BASE_KEY_PATH).key,
            master.derive_path(SCAN_KEY_PATH).key,
        )

    @classmethod
    def from_config(cls, config: WalletConfig) -> Wallet:
        """Build from explicit hex keys, else from the mnemonic.

        A base key without a scan key doubles as the scan key.

        Raises:
            ValidationError: If neither is configured or a key is malformed.
        """
        if config.base_priv_hex:
            base = _parse_priv(config.base_priv_hex, "base key")
            if config.scan_priv_hex:
                scan = _parse_priv(config.scan_priv_hex, "scan key")
            else:
                logger.warning("No scan key configured; using the base key as the scan key")
                scan = base
            spend = _parse_priv(config.spend_priv_hex, "spend key") if config.spend_priv_hex else None
            return cls.from_keys(base, scan, spend)
        if config.mnemonic:
            return cls.from_mnemonic(config.mnemonic)
        msg = "wallet is not configured: set a mnemonic or base/scan private keys"
        raise ValidationError(msg)


@dataclass
class PoolOpContext:
    """Everything one operation needs, passed explicitly."""

    config: AppConfig
    wallet: Wallet
    store: FileStateStore
    chain: ChainClient
    owner: str = "me"

    @property
    def network(self) -> Network:
        return self.config.network

    @property
    def dust(self) -> int:
        return self.config.pool.dust

    @property
    def fee(self) -> int:
        return self.config.pool.default_fee

    def load_state(self) -> PoolState:
        return self.store.load_or_empty(self.network)

    def save_state(self, state: PoolState) -> None:
        self.store.save(state)
