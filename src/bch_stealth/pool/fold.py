"""Covenant state fold (pool hash fold) and its unlocking data.

The covenant recomputes a shard's next NFT commitment from the current one.
This module mirrors that pure function off-chain so builders can predict the
output commitment and lay out the unlocking pushes the covenant expects.

v1.1::

    catCap33 = norm(category32) || capByte
    h0  = H(stateIn || stateIn)
    h1  = H(h0 || stateIn)
    h2  = H(h1 || catCap33)
    acc = H(h2 || noteHash32)
    for limb in reversed(limbs): acc = H(acc || limb)

where ``H`` is hash256 and integer limbs hash as minimal script numbers.

The fold binds commitments together but does not conserve amounts or check
who is spending; both are outside what the covenant enforces.
"""

from __future__ import annotations

from collections.abc import Sequence

from bch_stealth.bch.script import minimal_script_number, parse_pushes, push_data
from bch_stealth.config.settings import CategoryMode, FoldVersion
from bch_stealth.utils.crypto import hash256, sha256

Limb = bytes | int

DEFAULT_FOLD_VERSION = FoldVersion.V1_1
DEFAULT_CATEGORY_MODE = CategoryMode.REVERSE
DEFAULT_CAP_BYTE = 0x01
PROOF_BLOB_TAG = 0x50


def _require_len(value: bytes, n: int, label: str) -> None:
    if len(value) != n:
        msg = f"{label} must be {n} bytes, got {len(value)}"
        raise ValueError(msg)


def _limb_bytes(limb: Limb) -> bytes:
    if isinstance(limb, int):
        return minimal_script_number(limb)
    return bytes(limb)


def normalize_category(category32: bytes, mode: CategoryMode = DEFAULT_CATEGORY_MODE) -> bytes:
    _require_len(category32, 32, "category32")
    if CategoryMode(mode) == CategoryMode.REVERSE:
        return category32[::-1]
    return category32


def _fold_limbs(acc: bytes, limbs: Sequence[Limb]) -> bytes:
    for limb in reversed(limbs):
        acc = hash256(acc + _limb_bytes(limb))
    return acc


def compute_state_out(
    state_in32: bytes,
    *,
    version: FoldVersion = DEFAULT_FOLD_VERSION,
    category32: bytes | None = None,
    note_hash32: bytes | None = None,
    limbs: Sequence[Limb] = (),
    category_mode: CategoryMode = DEFAULT_CATEGORY_MODE,
    cap_byte: int = DEFAULT_CAP_BYTE,
) -> bytes:
    """Next shard commitment for *state_in32*.

    v0 and v1 fold the limbs directly onto the input state. v1.1 additionally
    requires *category32* and *note_hash32*.

    Raises:
        ValueError: On wrong input lengths or a missing v1.1 argument.
    """
    _require_len(state_in32, 32, "state_in32")
    version = FoldVersion(version)
    if version in (FoldVersion.V0, FoldVersion.V1):
        return _fold_limbs(state_in32, limbs)

    if category32 is None or note_hash32 is None:
        msg = "v1.1 fold requires category32 and note_hash32"
        raise ValueError(msg)
    _require_len(note_hash32, 32, "note_hash32")
    if not 0 <= cap_byte <= 0xFF:
        msg = "cap_byte must be 0..255"
        raise ValueError(msg)

    cat_cap = normalize_category(category32, category_mode) + bytes([cap_byte])
    h0 = hash256(state_in32 + state_in32)
    h1 = hash256(h0 + state_in32)
    h2 = hash256(h1 + cat_cap)
    acc = hash256(h2 + note_hash32)
    return _fold_limbs(acc, limbs)


def make_proof_blob(note_hash32: bytes, tag: int = PROOF_BLOB_TAG) -> bytes:
    """``sha256(tag || noteHash32)``; the covenant only length-checks it."""
    _require_len(note_hash32, 32, "note_hash32")
    if not 0 <= tag <= 0xFF:
        msg = "tag must be 0..255"
        raise ValueError(msg)
    return sha256(bytes([tag]) + note_hash32)


def build_unlocking_bytecode(
    *,
    version: FoldVersion = DEFAULT_FOLD_VERSION,
    limbs: Sequence[Limb] = (),
    note_hash32: bytes | None = None,
    proof_blob32: bytes | None = None,
    old_commit32: bytes | None = None,
    expected_new_commit32: bytes | None = None,
) -> bytes:
    """Fold pushes that precede the covenant signature pushes.

    - v0: ``limbs... oldCommit32 expectedNewCommit32``
    - v1: ``limbs...``
    - v1.1: ``limbs... noteHash32 proofBlob32`` (proof on top)
    """
    version = FoldVersion(version)
    out = b"".join(push_data(_limb_bytes(limb)) for limb in limbs)

    if version == FoldVersion.V0:
        if old_commit32 is None or expected_new_commit32 is None:
            msg = "v0 unlock requires old_commit32 and expected_new_commit32"
            raise ValueError(msg)
        _require_len(old_commit32, 32, "old_commit32")
        _require_len(expected_new_commit32, 32, "expected_new_commit32")
        return out + push_data(old_commit32) + push_data(expected_new_commit32)

    if version == FoldVersion.V1:
        return out

    if note_hash32 is None or proof_blob32 is None:
        msg = "v1.1 unlock requires note_hash32 and proof_blob32"
        raise ValueError(msg)
    _require_len(note_hash32, 32, "note_hash32")
    _require_len(proof_blob32, 32, "proof_blob32")
    return out + push_data(note_hash32) + push_data(proof_blob32)


def validate_v11_unlock(unlock_prefix: bytes, *, limb_count: int = 0) -> list[bytes]:
    """Check fold pushes against the v1.1 layout and return them.

    With no limbs the prefix must be exactly ``[noteHash32][proofBlob32]``.

    Raises:
        ValueError: If the bytecode is not push-only or does not match.
    """
    pushes = parse_pushes(unlock_prefix)
    expected = limb_count + 2
    if len(pushes) != expected:
        msg = f"v1.1 unlock expects {expected} pushes, got {len(pushes)}"
        raise ValueError(msg)
    for label, item in (("noteHash32", pushes[-2]), ("proofBlob32", pushes[-1])):
        if len(item) != 32:
            msg = f"v1.1 unlock {label} must be 32 bytes, got {len(item)}"
            raise ValueError(msg)
    return pushes
