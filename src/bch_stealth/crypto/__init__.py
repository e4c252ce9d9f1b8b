"""secp256k1 primitives: curve arithmetic, RFC6979 nonces and BCH Schnorr."""
