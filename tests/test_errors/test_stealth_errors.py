"""Tests for error classes and pre-defined error instances."""

from __future__ import annotations

import pytest

from bch_stealth.errors import definitions as defs
from bch_stealth.errors.chain_errors import BroadcastError, NetworkError
from bch_stealth.errors.stealth_errors import (
    DerivationMismatchError,
    InsufficientFundsError,
    NotFoundError,
    StealthError,
    ValidationError,
)

# ---------------------------------------------------------------------------
# StealthError base class
# ---------------------------------------------------------------------------


class TestStealthError:
    def test_default_attributes(self) -> None:
        err = StealthError("something broke")
        assert str(err) == "something broke"
        assert err.message == "something broke"
        assert err.code == "stealth-error"

    def test_is_exception(self) -> None:
        with pytest.raises(StealthError, match="boom"):
            raise StealthError("boom")


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class TestTaxonomy:
    @pytest.mark.parametrize(
        ("err", "code"),
        [
            (ValidationError("x"), "validation"),
            (NotFoundError("x"), "not-found"),
            (DerivationMismatchError("x"), "derivation-mismatch"),
            (NetworkError("x"), "network"),
            (BroadcastError("x"), "broadcast-rejected"),
        ],
    )
    def test_codes(self, err: StealthError, code: str) -> None:
        assert err.code == code
        assert isinstance(err, StealthError)

    def test_broadcast_is_network(self) -> None:
        assert isinstance(BroadcastError("x"), NetworkError)

    def test_insufficient_funds_shortfall(self) -> None:
        err = InsufficientFundsError("not enough", required=1000, available=400)
        assert err.shortfall == 600
        assert err.code == "insufficient-funds"
        assert "shortfall=600" in err.message

    def test_shortfall_never_negative(self) -> None:
        assert InsufficientFundsError("x", required=1, available=5).shortfall == 0

    def test_mismatch_carries_hashes(self) -> None:
        err = DerivationMismatchError("bad", expected_hash160="aa", derived_hash160="bb")
        assert (err.expected_hash160, err.derived_hash160) == ("aa", "bb")


# ---------------------------------------------------------------------------
# Pre-defined instances
# ---------------------------------------------------------------------------


class TestDefinitions:
    def test_pool_errors(self) -> None:
        assert isinstance(defs.ErrPoolNotInitialized, NotFoundError)
        assert isinstance(defs.ErrPoolMissingCovenant, ValidationError)
        assert "pool-init" in defs.ErrPoolNotInitialized.message

    def test_deposit_errors(self) -> None:
        assert isinstance(defs.ErrNoStagedDeposit, NotFoundError)
        assert isinstance(defs.ErrDepositMissingContext, ValidationError)
