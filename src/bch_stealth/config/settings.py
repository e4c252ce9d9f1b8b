"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``BCHSTEALTH_``, nested via ``__``)
2. YAML config file (``--config path`` or ``BCHSTEALTH_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class Network(enum.StrEnum):
    """Supported BCH networks."""

    MAINNET = "mainnet"
    CHIPNET = "chipnet"
    TESTNET = "testnet"


class FundingPreference(enum.StrEnum):
    """Which funding source the selector tries first."""

    STEALTH_FIRST = "stealth_first"
    BASE_FIRST = "base_first"


class FoldVersion(enum.StrEnum):
    """Covenant state-fold versions."""

    V0 = "v0"
    V1 = "v1"
    V1_1 = "v1.1"


class CategoryMode(enum.StrEnum):
    """Byte order the fold uses for the token category."""

    REVERSE = "reverse"
    DIRECT = "direct"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ElectrumConfig(BaseSettings):
    """Electrum JSON-RPC backend settings."""

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_ELECTRUM__",
        case_sensitive=False,
    )

    url: str = "http://localhost:50001"
    timeout: float = 30.0
    unspent_retry_attempts: int = 3
    unspent_retry_delay: float = 0.5


class PoolConfig(BaseSettings):
    """Shard pool parameters."""

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_POOL__",
        case_sensitive=False,
    )

    shard_count: int = Field(default=8, ge=1)
    shard_value: int = Field(default=2000, description="Satoshis locked per shard at init")
    default_fee: int = Field(default=2000, description="Flat fee for covenant spends")
    dust: int = 546
    pool_version: FoldVersion = FoldVersion.V1_1
    category_mode: CategoryMode = CategoryMode.REVERSE
    cap_byte: int = Field(default=0x01, ge=0, le=0xFF)
    pool_id_hex: str = ""
    redeem_script_hex: str = Field(default="", description="Compiled covenant bytecode (hex)")


class GrindConfig(BaseSettings):
    """RPA prefix grinding settings."""

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_GRIND__",
        case_sensitive=False,
    )

    enabled: bool = True
    prefix_bits: int = 16
    max_attempts: int = 256
    prefix_override_hex: str = ""

    @field_validator("prefix_bits")
    @classmethod
    def _check_bits(cls, v: int) -> int:
        if v not in (8, 16):
            msg = "prefix_bits must be 8 or 16"
            raise ValueError(msg)
        return v


class WalletConfig(BaseSettings):
    """Key material. Either a mnemonic or explicit hex keys."""

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_WALLET__",
        case_sensitive=False,
    )

    mnemonic: str = ""
    base_priv_hex: str = ""
    scan_priv_hex: str = ""
    spend_priv_hex: str = ""


class ScanConfig(BaseSettings):
    """Receiver-side RPA scan settings."""

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_SCAN__",
        case_sensitive=False,
    )

    max_role_index: int = 16
    window_blocks: int = 144


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``BCHSTEALTH_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="BCHSTEALTH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    network: Network = Network.CHIPNET
    state_file: str = "./.bch-stealth/state.json"
    funding_preference: FundingPreference = FundingPreference.STEALTH_FIRST
    fee_rate_fallback: float = Field(default=1.0, gt=0, description="sats/byte when the backend has no estimate")
    config_path: str = ""

    electrum: ElectrumConfig = Field(default_factory=ElectrumConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    grind: GrindConfig = Field(default_factory=GrindConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
