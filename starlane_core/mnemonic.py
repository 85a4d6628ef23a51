"""
BIP-39 seed phrases for Starlane.

  - Phrase generation from fresh entropy (128/160/192/224/256 bits)
  - Strict validation: word count, wordlist membership and checksum
  - PBKDF2-HMAC-SHA512 seed stretching (2048 rounds, 64-byte seed)

The English wordlist is taken from the ``mnemonic`` package (the Trezor
reference implementation); the encoding itself lives here so that each
failure can be reported as its own error type.
"""

from __future__ import annotations

import hashlib
import secrets
import unicodedata
from dataclasses import dataclass

from mnemonic import Mnemonic

from starlane_core.errors import (
    InvalidChecksum,
    InvalidLength,
    InvalidStrength,
    UnknownWord,
)

STRENGTHS = (128, 160, 192, 224, 256)
WORD_COUNTS = (12, 15, 18, 21, 24)
PBKDF2_ROUNDS = 2048
SEED_BYTES = 64


_WORDLIST: list[str] | None = None
_WORD_INDEX: dict[str, int] | None = None


def _get_wordlist() -> list[str]:
    global _WORDLIST, _WORD_INDEX
    if _WORDLIST is None:
        words = list(Mnemonic("english").wordlist)
        if len(words) != 2048:
            raise RuntimeError(f"BIP-39 wordlist has {len(words)} words")
        _WORD_INDEX = {w: i for i, w in enumerate(words)}
        _WORDLIST = words
    return _WORDLIST


def _get_word_index() -> dict[str, int]:
    _get_wordlist()
    assert _WORD_INDEX is not None
    return _WORD_INDEX


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFKD", text)


@dataclass(frozen=True)
class SeedPhrase:
    """A checksummed BIP-39 phrase. Never printed in full."""

    words: tuple[str, ...]

    def __str__(self) -> str:
        return " ".join(self.words)

    def __repr__(self) -> str:
        return f"SeedPhrase(<{len(self.words)} words>)"

    def __len__(self) -> int:
        return len(self.words)

    def to_seed(self, passphrase: str = "") -> bytes:
        return seed_from_phrase(self, passphrase)


def _checksum_bits(entropy: bytes) -> str:
    cs_len = len(entropy) * 8 // 32
    digest = hashlib.sha256(entropy).digest()
    return bin(int.from_bytes(digest, "big"))[2:].zfill(256)[:cs_len]


def entropy_to_phrase(entropy: bytes) -> SeedPhrase:
    """Map raw entropy to its BIP-39 phrase (deterministic)."""
    if len(entropy) * 8 not in STRENGTHS:
        raise InvalidStrength(len(entropy) * 8)
    wordlist = _get_wordlist()
    bits = bin(int.from_bytes(entropy, "big"))[2:].zfill(len(entropy) * 8)
    bits += _checksum_bits(entropy)
    words = tuple(
        wordlist[int(bits[i : i + 11], 2)] for i in range(0, len(bits), 11)
    )
    return SeedPhrase(words)


def phrase_from_entropy(strength: int = 256) -> SeedPhrase:
    """Generate a new phrase from ``strength`` bits of OS randomness."""
    if strength not in STRENGTHS:
        raise InvalidStrength(strength)
    return entropy_to_phrase(secrets.token_bytes(strength // 8))


def _split(phrase: str | SeedPhrase) -> list[str]:
    if isinstance(phrase, SeedPhrase):
        return list(phrase.words)
    return _normalize(phrase).lower().split()


def phrase_to_entropy(phrase: str | SeedPhrase) -> bytes:
    """Recover the entropy behind a phrase, checking the checksum."""
    words = _split(phrase)
    if len(words) not in WORD_COUNTS:
        raise InvalidLength(len(words))
    index = _get_word_index()
    bits = ""
    for pos, word in enumerate(words):
        idx = index.get(word)
        if idx is None:
            raise UnknownWord(word, pos)
        bits += bin(idx)[2:].zfill(11)

    cs_len = len(bits) // 33
    ent_bits, cs = bits[:-cs_len], bits[-cs_len:]
    entropy = int(ent_bits, 2).to_bytes(len(ent_bits) // 8, "big")
    if _checksum_bits(entropy) != cs:
        raise InvalidChecksum()
    return entropy


def validate(phrase: str | SeedPhrase) -> SeedPhrase:
    """Parse and fully validate a phrase, returning the canonical form."""
    words = _split(phrase)
    phrase_to_entropy(" ".join(words))
    return SeedPhrase(tuple(words))


def is_valid(phrase: str | SeedPhrase) -> bool:
    try:
        validate(phrase)
    except (InvalidLength, UnknownWord, InvalidChecksum):
        return False
    return True


def seed_from_phrase(phrase: str | SeedPhrase, passphrase: str = "") -> bytes:
    """
    Stretch a phrase (plus optional passphrase) into the 64-byte BIP-39 seed.

    The phrase is not validated here: BIP-39 defines the seed for any
    string, and callers that need validation call :func:`validate` first.
    """
    if isinstance(phrase, SeedPhrase):
        text = str(phrase)
    else:
        text = " ".join(_normalize(phrase).split())
    salt = _normalize("mnemonic" + passphrase).encode("utf-8")
    return hashlib.pbkdf2_hmac(
        "sha512", _normalize(text).encode("utf-8"), salt, PBKDF2_ROUNDS, dklen=SEED_BYTES,
    )
