"""
Account addresses for Starlane.

An address is the 20-byte Hash160 of a compressed secp256k1 public key,
rendered as bech32 with a chain-specific human-readable prefix
(``cosmos1...``, ``osmo1...``).
"""

from __future__ import annotations

from dataclasses import dataclass

import bech32

from starlane_core.crypto_utils import PUBLIC_KEY_BYTES, hash160
from starlane_core.errors import InvalidAddress, InvalidKey, InvalidPrefix

ADDRESS_BYTES = 20

# Cosmos SDK accepts bech32 strings up to 1023 characters, longer than BIP-173's 90.
MAX_BECH32_LENGTH = 1023
_BIP173_LENGTH = 90


def check_prefix(prefix: str) -> str:
    """Validate a bech32 prefix; the checksum alphabet is case-sensitive."""
    if not prefix:
        raise InvalidPrefix(prefix, "empty")
    if any(ord(c) < 33 or ord(c) > 126 for c in prefix):
        raise InvalidPrefix(prefix, "characters outside US-ASCII 33..126")
    if prefix.lower() != prefix:
        reason = "upper case" if prefix.upper() == prefix else "mixed case"
        raise InvalidPrefix(prefix, reason)
    return prefix


def _decode_long(text: str):
    # bech32.bech32_decode stops at 90 characters; same rules, library checksum.
    if text.lower() != text and text.upper() != text:
        return None, None
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        return None, None
    if not all(c in bech32.CHARSET for c in text[pos + 1:]):
        return None, None
    hrp = text[:pos]
    data = [bech32.CHARSET.find(c) for c in text[pos + 1:]]
    if not bech32.bech32_verify_checksum(hrp, data):
        return None, None
    return hrp, data[:-6]


def decode(text: str) -> tuple[str, bytes]:
    """Split a bech32 string into its prefix and 8-bit payload."""
    if len(text) > MAX_BECH32_LENGTH:
        raise InvalidAddress(f"{text[:16]!r}...: longer than {MAX_BECH32_LENGTH} characters")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise InvalidAddress(f"{text!r}: characters outside US-ASCII 33..126")
    if len(text) <= _BIP173_LENGTH:
        hrp, data = bech32.bech32_decode(text)
    else:
        hrp, data = _decode_long(text)
    if hrp is None:
        raise InvalidAddress(f"{text!r}: not a valid bech32 string")
    payload = bech32.convertbits(data, 5, 8, False)
    if payload is None:
        raise InvalidAddress(f"{text!r}: invalid padding in data part")
    return hrp, bytes(payload)


def encode(prefix: str, payload: bytes) -> str:
    return bech32.bech32_encode(check_prefix(prefix), bech32.convertbits(payload, 8, 5))


@dataclass(frozen=True)
class Address:
    """A 20-byte account hash. Prefix-free; the prefix is applied on output."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != ADDRESS_BYTES:
            raise InvalidAddress(f"address must be 20 bytes, got {len(self.raw)}")

    @classmethod
    def from_public_key(cls, public_key: bytes) -> Address:
        if len(public_key) != PUBLIC_KEY_BYTES:
            raise InvalidKey("public key must be a 33-byte compressed point")
        return cls(hash160(public_key))

    @classmethod
    def from_bech32(cls, text: str, prefix: str | None = None) -> Address:
        hrp, payload = decode(text)
        if prefix is not None and hrp != prefix:
            raise InvalidAddress(f"{text!r}: expected prefix {prefix!r}, got {hrp!r}")
        return cls(payload)

    def to_bech32(self, prefix: str) -> str:
        return encode(prefix, self.raw)

    def hex(self) -> str:
        return self.raw.hex().upper()

    def __str__(self) -> str:
        return self.hex()


def address(public_key: bytes, prefix: str) -> str:
    """bech32 account address for a compressed public key."""
    check_prefix(prefix)
    return Address.from_public_key(public_key).to_bech32(prefix)
