"""BCH signature hashing and input signing.

The preimage follows the BIP143-style layout used by BCH with
``SIGHASH_ALL | SIGHASH_FORKID``; when the spent output carries a CashTokens
prefix, that prefix is inserted between the outpoint and the script code.
"""

from __future__ import annotations

import logging
import struct

from bch_stealth.bch.script import minimal_script_number, p2pkh_unlock_script, push_data
from bch_stealth.bch.tokens import split_token_prefix
from bch_stealth.bch.transaction import Transaction, encode_varint
from bch_stealth.crypto.curve import pubkey_from_priv
from bch_stealth.crypto.schnorr import schnorr_sign, schnorr_verify
from bch_stealth.utils.crypto import sha256d

logger = logging.getLogger(__name__)

SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
SIGHASH_ALL_FORKID = SIGHASH_ALL | SIGHASH_FORKID


def build_preimage(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL_FORKID,
    prev_token_prefix: bytes = b"",
) -> bytes:
    """Serialise the signing preimage for one input.

    Args:
        tx: Transaction being signed.
        input_index: Index of the input.
        script_code: Locking bytecode of the spent output (redeem script for P2SH),
            without any token prefix.
        value: Satoshi value of the spent output.
        sighash_type: Sighash flags, default ``0x41``.
        prev_token_prefix: Token prefix of the spent output, if it had one.
    """
    if not 0 <= input_index < len(tx.inputs):
        msg = f"input index {input_index} out of range"
        raise ValueError(msg)
    inp = tx.inputs[input_index]

    prevouts = b"".join(i.outpoint_bytes() for i in tx.inputs)
    sequences = b"".join(struct.pack("<I", i.sequence & 0xFFFFFFFF) for i in tx.inputs)
    outputs = b"".join(o.serialize() for o in tx.outputs)

    parts = [
        struct.pack("<I", tx.version & 0xFFFFFFFF),
        sha256d(prevouts),
        sha256d(sequences),
        inp.outpoint_bytes(),
        prev_token_prefix,
        encode_varint(len(script_code)),
        script_code,
        struct.pack("<Q", value),
        struct.pack("<I", inp.sequence & 0xFFFFFFFF),
        sha256d(outputs),
        struct.pack("<I", tx.locktime & 0xFFFFFFFF),
        struct.pack("<I", sighash_type),
    ]
    return b"".join(parts)


def signature_hash(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL_FORKID,
    prev_token_prefix: bytes = b"",
) -> bytes:
    return sha256d(build_preimage(tx, input_index, script_code, value, sighash_type, prev_token_prefix))


def _sign(sighash: bytes, priv32: bytes, pub33: bytes, sighash_type: int) -> bytes:
    sig64 = schnorr_sign(sighash, priv32, pub33)
    sig65 = sig64 + bytes([sighash_type])
    if not schnorr_verify(sig65, sighash, pub33):
        msg = "Schnorr self-verification failed"
        raise ValueError(msg)
    return sig65


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    priv32: bytes,
    prev_script_pubkey: bytes,
    value: int,
) -> Transaction:
    """Sign a P2PKH input in place; scriptSig becomes ``<sig65> <pub33>``."""
    _, prefix, locking = split_token_prefix(prev_script_pubkey)
    pub33 = pubkey_from_priv(priv32)
    sighash = signature_hash(tx, input_index, locking, value, SIGHASH_ALL_FORKID, prefix)
    sig65 = _sign(sighash, priv32, pub33, SIGHASH_ALL_FORKID)
    tx.inputs[input_index].script_sig = p2pkh_unlock_script(sig65, pub33)
    return tx


def sign_covenant_input(
    tx: Transaction,
    input_index: int,
    priv32: bytes,
    redeem_script: bytes,
    value: int,
    prev_script_pubkey: bytes,
    amount_commitment: int = 0,
    unlock_prefix: bytes = b"",
) -> Transaction:
    """Sign a P2SH covenant input in place.

    The unlocking bytecode is the optional fold prefix followed by
    ``<amountCommitment> <pub33> <sig65> <redeemScript>``; the redeem script is
    the script code of the preimage.
    """
    if not redeem_script:
        msg = "redeem_script must not be empty"
        raise ValueError(msg)
    _, prefix, _ = split_token_prefix(prev_script_pubkey)
    pub33 = pubkey_from_priv(priv32)
    sighash = signature_hash(tx, input_index, redeem_script, value, SIGHASH_ALL_FORKID, prefix)
    sig65 = _sign(sighash, priv32, pub33, SIGHASH_ALL_FORKID)
    logger.debug("covenant input %d sighash=%s prefix_len=%d", input_index, sighash.hex(), len(prefix))
    tx.inputs[input_index].script_sig = (
        unlock_prefix
        + push_data(minimal_script_number(amount_commitment))
        + push_data(pub33)
        + push_data(sig65)
        + push_data(redeem_script)
    )
    return tx


def estimate_tx_size(num_inputs: int, num_outputs: int) -> int:
    """Rough size estimate used for fee calculation."""
    return 10 + 140 * num_inputs + 34 * num_outputs
