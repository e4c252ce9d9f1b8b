"""Pre-built error instances for fixed-message failures."""

from __future__ import annotations

from bch_stealth.errors.stealth_errors import NotFoundError, ValidationError

# -- Pool ------------------------------------------------------------------

ErrPoolNotInitialized = NotFoundError("pool state not initialized; run pool-init first")
ErrPoolMissingCovenant = ValidationError(
    "pool state is missing categoryHex/redeemScriptHex; run pool-init first or repair state"
)

# -- Deposits --------------------------------------------------------------

ErrNoStagedDeposit = NotFoundError("no staged, un-imported deposit found")
ErrDepositMissingContext = ValidationError(
    "rpa deposit has no rpaContext; it cannot be re-derived for import"
)
