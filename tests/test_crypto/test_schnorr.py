"""Tests for curve helpers, RFC6979 nonces and BCH Schnorr signatures."""

from __future__ import annotations

import pytest

from bch_stealth.crypto.curve import (
    N,
    ensure_even_y_priv,
    int_to_bytes32,
    mul_g,
    point_to_pub33,
    priv_to_int,
    pub33_to_point,
    pubkey_from_priv,
)
from bch_stealth.crypto.rfc6979 import nonce_rfc6979
from bch_stealth.crypto.schnorr import nonce_point_is_residue, schnorr_sign, schnorr_verify
from bch_stealth.utils.crypto import hash160, sha256

# Generator point, compressed.
G_PUB = bytes.fromhex("0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")

_KEYS = [int_to_bytes32(k) for k in (1, 2, 3, 0xDEADBEEF, N - 1)] + [bytes.fromhex("11" * 32)]
_MSGS = [sha256(b""), sha256(b"bch-stealth"), bytes(32), b"\xff" * 32]


# ---------------------------------------------------------------------------
# Curve
# ---------------------------------------------------------------------------


class TestCurve:
    def test_generator_pubkey(self) -> None:
        assert pubkey_from_priv(int_to_bytes32(1)) == G_PUB

    def test_pub33_round_trip(self) -> None:
        for priv in _KEYS:
            pub = pubkey_from_priv(priv)
            assert point_to_pub33(pub33_to_point(pub)) == pub

    def test_rejects_zero_and_order(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            priv_to_int(bytes(32))
        with pytest.raises(ValueError, match="out of range"):
            priv_to_int(int_to_bytes32(N))

    def test_rejects_bad_prefix(self) -> None:
        with pytest.raises(ValueError, match="prefix"):
            pub33_to_point(b"\x04" + G_PUB[1:])

    def test_rejects_short_key(self) -> None:
        with pytest.raises(ValueError, match="33 bytes"):
            pub33_to_point(G_PUB[:32])

    def test_even_y_normalisation(self) -> None:
        for priv in _KEYS:
            normalised = ensure_even_y_priv(priv)
            assert pubkey_from_priv(normalised)[0] == 0x02
            # Same x-coordinate either way.
            assert pubkey_from_priv(normalised)[1:] == pubkey_from_priv(priv)[1:]

    def test_even_y_is_idempotent(self) -> None:
        priv = ensure_even_y_priv(bytes.fromhex("22" * 32))
        assert ensure_even_y_priv(priv) == priv

    def test_point_addition_matches_scalar_sum(self) -> None:
        assert point_to_pub33(mul_g(2) + mul_g(3)) == pubkey_from_priv(int_to_bytes32(5))


# ---------------------------------------------------------------------------
# Nonce
# ---------------------------------------------------------------------------


class TestRfc6979:
    def test_deterministic(self) -> None:
        assert nonce_rfc6979(7, _MSGS[1]) == nonce_rfc6979(7, _MSGS[1])

    def test_in_range(self) -> None:
        for msg in _MSGS:
            k = nonce_rfc6979(12345, msg)
            assert 0 < k < N

    def test_depends_on_message_and_key(self) -> None:
        assert nonce_rfc6979(7, _MSGS[0]) != nonce_rfc6979(7, _MSGS[1])
        assert nonce_rfc6979(7, _MSGS[0]) != nonce_rfc6979(8, _MSGS[0])

    def test_extra_data_separates_domains(self) -> None:
        assert nonce_rfc6979(7, _MSGS[0]) != nonce_rfc6979(7, _MSGS[0], extra=b"\x00" * 16)

    def test_rejects_bad_message_length(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            nonce_rfc6979(7, b"short")


# ---------------------------------------------------------------------------
# Schnorr
# ---------------------------------------------------------------------------


class TestSchnorr:
    @pytest.mark.parametrize("priv", _KEYS)
    def test_sign_verify(self, priv: bytes) -> None:
        pub = pubkey_from_priv(priv)
        for msg in _MSGS:
            sig = schnorr_sign(msg, priv, pub)
            assert len(sig) == 64
            assert schnorr_verify(sig, msg, pub)

    @pytest.mark.parametrize("priv", _KEYS)
    def test_nonce_point_is_always_residue(self, priv: bytes) -> None:
        pub = pubkey_from_priv(priv)
        for msg in _MSGS:
            assert nonce_point_is_residue(schnorr_sign(msg, priv, pub), msg, pub)

    def test_deterministic_signatures(self) -> None:
        priv = _KEYS[3]
        assert schnorr_sign(_MSGS[1], priv) == schnorr_sign(_MSGS[1], priv)

    def test_pub_derived_when_omitted(self) -> None:
        priv = _KEYS[2]
        assert schnorr_sign(_MSGS[0], priv) == schnorr_sign(_MSGS[0], priv, pubkey_from_priv(priv))

    def test_accepts_sighash_suffix(self) -> None:
        priv = _KEYS[0]
        pub = pubkey_from_priv(priv)
        sig = schnorr_sign(_MSGS[0], priv, pub)
        assert schnorr_verify(sig + b"\x41", _MSGS[0], pub)

    def test_wrong_message_fails(self) -> None:
        priv = _KEYS[1]
        pub = pubkey_from_priv(priv)
        sig = schnorr_sign(_MSGS[0], priv, pub)
        assert not schnorr_verify(sig, _MSGS[1], pub)

    def test_wrong_key_fails(self) -> None:
        sig = schnorr_sign(_MSGS[0], _KEYS[1])
        assert not schnorr_verify(sig, _MSGS[0], pubkey_from_priv(_KEYS[2]))

    def test_tampered_s_fails(self) -> None:
        priv = _KEYS[4]
        pub = pubkey_from_priv(priv)
        sig = bytearray(schnorr_sign(_MSGS[2], priv, pub))
        sig[-1] ^= 0x01
        assert not schnorr_verify(bytes(sig), _MSGS[2], pub)

    def test_rejects_out_of_range_components(self) -> None:
        pub = pubkey_from_priv(_KEYS[0])
        assert not schnorr_verify(b"\xff" * 32 + bytes(32), _MSGS[0], pub)
        assert not schnorr_verify(bytes(32) + int_to_bytes32(N), _MSGS[0], pub)

    def test_rejects_bad_lengths(self) -> None:
        pub = pubkey_from_priv(_KEYS[0])
        sig = schnorr_sign(_MSGS[0], _KEYS[0], pub)
        assert not schnorr_verify(sig[:63], _MSGS[0], pub)
        assert not schnorr_verify(sig, _MSGS[0], pub[:32])
        assert not schnorr_verify(sig, _MSGS[0][:31], pub)

    def test_sign_rejects_zero_key(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            schnorr_sign(_MSGS[0], bytes(32), G_PUB)

    @pytest.mark.parametrize("scalar", [N, N + 1, 2**256 - 1])
    def test_sign_rejects_key_at_or_above_order(self, scalar: int) -> None:
        with pytest.raises(ValueError, match="out of range"):
            schnorr_sign(_MSGS[0], scalar.to_bytes(32, "big"))


class TestHashes:
    def test_hash160_of_generator(self) -> None:
        assert hash160(G_PUB).hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"
