"""
Cryptographic primitives for Starlane.

This module is the single place where secp256k1 curve arithmetic happens:

  - SHA-256 / RIPEMD-160 / Hash160 / HMAC-SHA512
  - Private scalar validation and compressed public keys
  - RFC 6979 deterministic ECDSA signing with low-S normalisation
  - Signature verification (low-S only, as the chain requires)
  - Public point tweaking for watch-only key derivation

Everything here is a pure function of its arguments.
"""

from __future__ import annotations

import hashlib
import hmac

from Crypto.Hash import RIPEMD160
from ecdsa import (
    SECP256k1,
    BadSignatureError,
    MalformedPointError,
    SigningKey,
    VerifyingKey,
)
from ecdsa.ellipticcurve import INFINITY
from ecdsa.util import sigdecode_string, sigencode_string_canonize

from starlane_core.errors import InvalidKey

CURVE_ORDER: int = SECP256k1.order
HALF_ORDER: int = CURVE_ORDER // 2
PRIVATE_KEY_BYTES = 32
PUBLIC_KEY_BYTES = 33
SIGNATURE_BYTES = 64


# ===================================================================
#  Hashing
# ===================================================================

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def ripemd160(data: bytes) -> bytes:
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data)), the 20-byte account hash."""
    return ripemd160(sha256(data))


def hmac_sha512(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha512).digest()


# ===================================================================
#  Keys
# ===================================================================

def scalar_in_range(value: int) -> bool:
    return 0 < value < CURVE_ORDER


def _signing_key(private_key: bytes) -> SigningKey:
    if len(private_key) != PRIVATE_KEY_BYTES:
        raise InvalidKey(f"private key must be 32 bytes, got {len(private_key)}")
    if not scalar_in_range(int.from_bytes(private_key, "big")):
        raise InvalidKey("private key scalar outside [1, n-1]")
    return SigningKey.from_string(private_key, curve=SECP256k1)


def _verifying_key(public_key: bytes) -> VerifyingKey:
    if len(public_key) != PUBLIC_KEY_BYTES or public_key[0] not in (2, 3):
        raise InvalidKey("public key must be a 33-byte compressed point")
    try:
        return VerifyingKey.from_string(public_key, curve=SECP256k1)
    except MalformedPointError as exc:
        raise InvalidKey(f"public key is not on secp256k1: {exc}") from exc


def check_public_key(public_key: bytes) -> bytes:
    """Return ``public_key`` unchanged if it is a valid compressed point."""
    _verifying_key(public_key)
    return public_key


def public_key(private_key: bytes) -> bytes:
    """Compressed (33-byte) public key for a private scalar."""
    vk = _signing_key(private_key).get_verifying_key()
    return vk.to_string("compressed")


def add_scalar_to_point(public_key: bytes, tweak: int) -> bytes:
    """
    Return ``P + tweak*G`` in compressed form.

    Raises InvalidKey if the result is the point at infinity.
    """
    point = _verifying_key(public_key).pubkey.point
    result = point + SECP256k1.generator * tweak
    if result == INFINITY:
        raise InvalidKey("tweaked public key is the point at infinity")
    return VerifyingKey.from_public_point(result, curve=SECP256k1).to_string("compressed")


# ===================================================================
#  Signatures
# ===================================================================

def sign(private_key: bytes, message: bytes) -> bytes:
    """
    Sign ``SHA256(message)`` and return the 64-byte ``r || s`` form.

    The nonce comes from RFC 6979 (no randomness is consumed), so signing
    the same bytes with the same key always gives the same signature.
    ``s`` is normalised to the lower half of the curve order.
    """
    sk = _signing_key(private_key)
    return sk.sign_digest_deterministic(
        sha256(message),
        hashfunc=hashlib.sha256,
        sigencode=sigencode_string_canonize,
    )


def is_low_s(signature: bytes) -> bool:
    if len(signature) != SIGNATURE_BYTES:
        return False
    return int.from_bytes(signature[32:], "big") <= HALF_ORDER


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check a low-S ``r || s`` signature over ``SHA256(message)``."""
    if not is_low_s(signature):
        return False
    try:
        vk = _verifying_key(public_key)
        return vk.verify_digest(signature, sha256(message), sigdecode=sigdecode_string)
    except (BadSignatureError, InvalidKey):
        return False
