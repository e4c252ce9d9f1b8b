"""Pure transaction builders for the shard state machine.

Each builder takes fully resolved inputs (prevout values, locking scripts,
signing keys) and returns a signed :class:`BuiltTx`. Nothing here touches the
network or the persisted state; ops/ patch ``txid`` into the returned shard
updates after a successful broadcast.

Shard locking bytecode is always ``tokenPrefix(mutable NFT, commitment) ||
P2SH(hash160(redeemScript))``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from bch_stealth.bch.script import p2pkh_lock_script, p2sh_lock_script_for
from bch_stealth.bch.sighash import sign_covenant_input, sign_p2pkh_input
from bch_stealth.bch.tokens import TokenData, add_token_to_script
from bch_stealth.bch.transaction import Transaction
from bch_stealth.config.settings import CategoryMode, FoldVersion
from bch_stealth.errors.stealth_errors import InsufficientFundsError, ValidationError
from bch_stealth.pool.fold import (
    DEFAULT_CAP_BYTE,
    DEFAULT_CATEGORY_MODE,
    DEFAULT_FOLD_VERSION,
    Limb,
    build_unlocking_bytecode,
    compute_state_out,
    make_proof_blob,
    validate_v11_unlock,
)
from bch_stealth.pool.policy import (
    DEFAULT_FEE,
    DUST,
    SHARD_VALUE,
    category_from_funding_txid,
    initial_shard_commitment,
    outpoint_hash,
    withdraw_nullifier,
    withdraw_proof_blob,
)

logger = logging.getLogger(__name__)


class FeeMode(enum.StrEnum):
    """Who pays the network fee of a withdrawal."""

    FROM_SHARD = "from-shard"
    EXTERNAL = "external"


# ---------------------------------------------------------------------------
# Builder inputs / outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolParams:
    """Covenant parameters shared by every shard of a pool."""

    category32: bytes
    redeem_script: bytes
    version: FoldVersion = DEFAULT_FOLD_VERSION
    category_mode: CategoryMode = DEFAULT_CATEGORY_MODE
    cap_byte: int = DEFAULT_CAP_BYTE

    def __post_init__(self) -> None:
        if len(self.category32) != 32:
            msg = f"category must be 32 bytes, got {len(self.category32)}"
            raise ValidationError(msg)
        if not self.redeem_script:
            msg = "redeem script must not be empty"
            raise ValidationError(msg)

    def shard_locking_script(self, commitment32: bytes) -> bytes:
        token = TokenData.mutable_nft(self.category32, commitment32)
        return add_token_to_script(token, p2sh_lock_script_for(self.redeem_script))


@dataclass(frozen=True)
class P2pkhInput:
    """A spendable P2PKH outpoint together with the key that signs it."""

    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    priv32: bytes


@dataclass(frozen=True)
class CovenantInput:
    """The current shard UTXO and the key that authorises the covenant spend."""

    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    commitment32: bytes
    signer_priv32: bytes


@dataclass(frozen=True)
class ShardUpdate:
    """Next location of a shard; ``txid`` is the builder's tx."""

    index: int
    txid: str
    vout: int
    value: int
    commitment_hex: str


@dataclass
class BuiltTx:
    """A signed transaction plus the shard pointers it creates."""

    tx: Transaction
    raw: str
    txid: str
    next_shards: list[ShardUpdate] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)


def _finish(tx: Transaction, updates: list[tuple[int, int, int, bytes]], diagnostics: dict[str, Any]) -> BuiltTx:
    txid = tx.txid()
    next_shards = [
        ShardUpdate(index=index, txid=txid, vout=vout, value=value, commitment_hex=commitment.hex())
        for index, vout, value, commitment in updates
    ]
    return BuiltTx(tx=tx, raw=tx.to_hex(), txid=txid, next_shards=next_shards, diagnostics=diagnostics)


def _check_dust(label: str, value: int, dust: int) -> None:
    if value < dust:
        msg = f"{label} below dust"
        raise InsufficientFundsError(msg, required=dust, available=value)


def _fold_transition(
    params: PoolParams,
    state_in32: bytes,
    note_hash32: bytes,
    proof_blob32: bytes,
    limbs: list[Limb],
) -> tuple[bytes, bytes]:
    """Return ``(stateOut, unlockPrefix)`` for one covenant transition."""
    state_out = compute_state_out(
        state_in32,
        version=params.version,
        category32=params.category32,
        note_hash32=note_hash32,
        limbs=limbs,
        category_mode=params.category_mode,
        cap_byte=params.cap_byte,
    )
    prefix = build_unlocking_bytecode(
        version=params.version,
        limbs=limbs,
        note_hash32=note_hash32,
        proof_blob32=proof_blob32,
        old_commit32=state_in32,
        expected_new_commit32=state_out,
    )
    if params.version == FoldVersion.V1_1:
        validate_v11_unlock(prefix, limb_count=len(limbs))
    return state_out, prefix


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


def build_init_tx(
    funding: P2pkhInput,
    change_script: bytes,
    redeem_script: bytes,
    *,
    pool_id20: bytes,
    shard_count: int,
    shard_value: int = SHARD_VALUE,
    fee: int = DEFAULT_FEE,
    dust: int = DUST,
) -> BuiltTx:
    """Create ``shard_count`` shards from one funding UTXO.

    The pool category is the funding txid, so output 0 is change and outputs
    ``1..N`` are the shards carrying their initial commitments.

    Raises:
        ValidationError: On a non-positive shard count or value.
        InsufficientFundsError: If change would fall below dust.
    """
    if shard_count <= 0:
        msg = "shard count must be > 0"
        raise ValidationError(msg)
    if shard_value < dust:
        msg = f"shard value {shard_value} is below dust {dust}"
        raise ValidationError(msg)

    category = category_from_funding_txid(funding.txid)
    params = PoolParams(category32=category, redeem_script=redeem_script)
    required = shard_count * shard_value + fee + dust
    if funding.value < required:
        msg = "funding UTXO too small for pool init"
        raise InsufficientFundsError(msg, required=required, available=funding.value)
    change = funding.value - shard_count * shard_value - fee

    tx = Transaction()
    tx.add_input(funding.txid, funding.vout)
    tx.add_output(change, change_script)
    updates: list[tuple[int, int, int, bytes]] = []
    for i in range(shard_count):
        commitment = initial_shard_commitment(pool_id20, category, i, shard_count)
        tx.add_output(shard_value, params.shard_locking_script(commitment))
        updates.append((i, i + 1, shard_value, commitment))

    sign_p2pkh_input(tx, 0, funding.priv32, funding.script_pubkey, funding.value)
    logger.debug("built init tx with %d shards, change=%d", shard_count, change)
    return _finish(
        tx,
        updates,
        {"category_hex": category.hex(), "pool_id_hex": pool_id20.hex(), "change": change, "fee": fee},
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def build_import_tx(
    params: PoolParams,
    shard_index: int,
    shard: CovenantInput,
    deposit: P2pkhInput,
    *,
    fee: int = DEFAULT_FEE,
    dust: int = DUST,
    amount_commitment: int = 0,
) -> BuiltTx:
    """Fold a deposit outpoint into a shard.

    Inputs are ``[shard, deposit]``; the single output is the next shard
    valued ``old + deposit - fee``.

    Raises:
        InsufficientFundsError: If the new shard value is below dust.
    """
    new_value = shard.value + deposit.value - fee
    _check_dust("new shard value", new_value, dust)

    note_hash = outpoint_hash(deposit.txid, deposit.vout)
    limbs: list[Limb] = [note_hash]
    state_out, unlock_prefix = _fold_transition(
        params, shard.commitment32, note_hash, make_proof_blob(note_hash), limbs
    )

    tx = Transaction()
    tx.add_input(shard.txid, shard.vout)
    tx.add_input(deposit.txid, deposit.vout)
    tx.add_output(new_value, params.shard_locking_script(state_out))

    sign_covenant_input(
        tx,
        0,
        shard.signer_priv32,
        params.redeem_script,
        shard.value,
        shard.script_pubkey,
        amount_commitment=amount_commitment,
        unlock_prefix=unlock_prefix,
    )
    sign_p2pkh_input(tx, 1, deposit.priv32, deposit.script_pubkey, deposit.value)

    return _finish(
        tx,
        [(shard_index, 0, new_value, state_out)],
        {
            "note_hash_hex": note_hash.hex(),
            "state_in_hex": shard.commitment32.hex(),
            "state_out_hex": state_out.hex(),
            "fee": fee,
        },
    )


# ---------------------------------------------------------------------------
# Withdraw
# ---------------------------------------------------------------------------


def build_withdraw_tx(
    params: PoolParams,
    shard_index: int,
    shard: CovenantInput,
    receiver_hash160: bytes,
    amount: int,
    *,
    fee_mode: FeeMode = FeeMode.FROM_SHARD,
    fee_input: P2pkhInput | None = None,
    change_script: bytes | None = None,
    fee: int = DEFAULT_FEE,
    dust: int = DUST,
    amount_commitment: int = 0,
) -> BuiltTx:
    """Pay *amount* out of a shard.

    The shard always shrinks by *amount*. In ``FROM_SHARD`` mode the fee is
    carved out of the payment and there is no change output; in ``EXTERNAL``
    mode *fee_input* pays the fee and the rest returns to *change_script*.

    Raises:
        ValidationError: On a bad receiver hash or missing external fee input.
        InsufficientFundsError: If any output would fall below dust.
    """
    fee_mode = FeeMode(fee_mode)
    if len(receiver_hash160) != 20:
        msg = f"receiver hash160 must be 20 bytes, got {len(receiver_hash160)}"
        raise ValidationError(msg)
    if amount <= 0:
        msg = "withdraw amount must be positive"
        raise ValidationError(msg)

    remainder = shard.value - amount
    _check_dust("shard remainder", remainder, dust)

    external: P2pkhInput | None = None
    change = 0
    if fee_mode == FeeMode.FROM_SHARD:
        payment = amount - fee
    else:
        if fee_input is None or change_script is None:
            msg = "external fee mode requires a fee input and a change script"
            raise ValidationError(msg)
        external = fee_input
        payment = amount
        change = fee_input.value - fee
        _check_dust("fee input change", change, dust)
    _check_dust("payment", payment, dust)

    nullifier = withdraw_nullifier(shard.commitment32, receiver_hash160, amount)
    state_out, unlock_prefix = _fold_transition(
        params, shard.commitment32, nullifier, withdraw_proof_blob(nullifier), []
    )

    tx = Transaction()
    tx.add_input(shard.txid, shard.vout)
    if external is not None:
        tx.add_input(external.txid, external.vout)
    tx.add_output(remainder, params.shard_locking_script(state_out))
    tx.add_output(payment, p2pkh_lock_script(receiver_hash160))
    if external is not None and change_script is not None:
        tx.add_output(change, change_script)

    sign_covenant_input(
        tx,
        0,
        shard.signer_priv32,
        params.redeem_script,
        shard.value,
        shard.script_pubkey,
        amount_commitment=amount_commitment,
        unlock_prefix=unlock_prefix,
    )
    if external is not None:
        sign_p2pkh_input(tx, 1, external.priv32, external.script_pubkey, external.value)

    return _finish(
        tx,
        [(shard_index, 0, remainder, state_out)],
        {
            "nullifier_hex": nullifier.hex(),
            "state_in_hex": shard.commitment32.hex(),
            "state_out_hex": state_out.hex(),
            "fee_mode": str(fee_mode),
            "payment": payment,
            "change": change,
            "fee": fee,
        },
    )
