"""Tests for the configuration system."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from bch_stealth.config.settings import (
    AppConfig,
    CategoryMode,
    ElectrumConfig,
    FoldVersion,
    FundingPreference,
    GrindConfig,
    Network,
    PoolConfig,
    ScanConfig,
    _load_yaml,
)

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_pool_defaults(self) -> None:
        cfg = PoolConfig()
        assert cfg.shard_count == 8
        assert cfg.shard_value == 2000
        assert cfg.default_fee == 2000
        assert cfg.dust == 546
        assert cfg.pool_version == FoldVersion.V1_1
        assert cfg.category_mode == CategoryMode.REVERSE
        assert cfg.cap_byte == 0x01
        assert cfg.redeem_script_hex == ""

    def test_grind_defaults(self) -> None:
        cfg = GrindConfig()
        assert cfg.enabled is True
        assert cfg.prefix_bits == 16
        assert cfg.max_attempts == 256

    def test_electrum_defaults(self) -> None:
        cfg = ElectrumConfig()
        assert cfg.url == "http://localhost:50001"
        assert cfg.unspent_retry_attempts == 3

    def test_scan_defaults(self) -> None:
        assert ScanConfig().window_blocks == 144

    def test_app_defaults(self) -> None:
        cfg = AppConfig()
        assert cfg.network == Network.CHIPNET
        assert cfg.funding_preference == FundingPreference.STEALTH_FIRST
        assert cfg.fee_rate_fallback == 1.0
        assert cfg.debug is False


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_prefix_bits(self) -> None:
        assert GrindConfig(prefix_bits=8).prefix_bits == 8
        with pytest.raises(ValidationError, match="8 or 16"):
            GrindConfig(prefix_bits=12)

    def test_shard_count_positive(self) -> None:
        with pytest.raises(ValidationError):
            PoolConfig(shard_count=0)

    def test_cap_byte_range(self) -> None:
        with pytest.raises(ValidationError):
            PoolConfig(cap_byte=256)

    def test_fee_rate_fallback_positive(self) -> None:
        with pytest.raises(ValidationError):
            AppConfig(fee_rate_fallback=0)

    def test_pool_version_parsed(self) -> None:
        assert PoolConfig(pool_version="v0").pool_version == FoldVersion.V0


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    def test_top_level_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BCHSTEALTH_NETWORK", "mainnet")
        monkeypatch.setenv("BCHSTEALTH_FUNDING_PREFERENCE", "base_first")
        cfg = AppConfig()
        assert cfg.network == Network.MAINNET
        assert cfg.funding_preference == FundingPreference.BASE_FIRST

    def test_nested_env_via_delimiter(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BCHSTEALTH_POOL__SHARD_COUNT", "4")
        monkeypatch.setenv("BCHSTEALTH_GRIND__ENABLED", "false")
        cfg = AppConfig()
        assert cfg.pool.shard_count == 4
        assert cfg.grind.enabled is False


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------


class TestYaml:
    def test_load_yaml_nonexistent(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "missing.yaml") == {}

    def test_load_yaml_non_dict(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        assert _load_yaml(path) == {}

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            textwrap.dedent(
                """\
                network: testnet
                state_file: /tmp/pool.json
                pool:
                  shard_count: 2
                  redeem_script_hex: c0d1
                electrum:
                  url: http://fulcrum.example:50001
                """
            )
        )
        cfg = AppConfig.from_yaml(path)
        assert cfg.network == Network.TESTNET
        assert cfg.state_file == "/tmp/pool.json"
        assert cfg.pool.shard_count == 2
        assert cfg.pool.redeem_script_hex == "c0d1"
        assert cfg.electrum.url == "http://fulcrum.example:50001"

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("network: testnet\n")
        monkeypatch.setenv("BCHSTEALTH_NETWORK", "mainnet")
        assert AppConfig.from_yaml(path).network == Network.MAINNET
