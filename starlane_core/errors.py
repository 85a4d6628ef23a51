"""
Exception hierarchy for Starlane.

Every error raised by the library derives from :class:`StarlaneError`.
The families mirror the pipeline stages:

  - PhraseError      seed phrase parsing / generation
  - DerivationError  HD key derivation
  - SigningError     key material and signatures
  - AddressError     bech32 address encoding / decoding
  - EncodingError    transaction assembly
  - SequenceError    account sequence bookkeeping
  - BroadcastError   node submission and transport

Errors that originate at the node keep the node's diagnostic ``code``,
``codespace`` and ``log`` so callers can decide whether to resubmit.
"""

from __future__ import annotations


class StarlaneError(Exception):
    """Base class for all Starlane errors."""


# ── Seed phrases ────────────────────────────────────────────────────

class PhraseError(StarlaneError):
    """A seed phrase could not be generated or parsed."""


class InvalidLength(PhraseError):
    def __init__(self, word_count: int):
        super().__init__(
            f"phrase has {word_count} words, expected 12/15/18/21/24"
        )
        self.word_count = word_count


class UnknownWord(PhraseError):
    def __init__(self, word: str, position: int):
        super().__init__(f"unknown word at position {position}: {word!r}")
        self.word = word
        self.position = position


class InvalidChecksum(PhraseError):
    def __init__(self) -> None:
        super().__init__("the phrase has an invalid checksum")


class InvalidStrength(PhraseError):
    def __init__(self, strength: int):
        super().__init__(
            f"strength must be one of 128/160/192/224/256 bits, got {strength}"
        )
        self.strength = strength


# ── Key derivation ──────────────────────────────────────────────────

class DerivationError(StarlaneError):
    """HD derivation failed."""


class InvalidPath(DerivationError):
    def __init__(self, path: str, reason: str = ""):
        msg = f"invalid derivation path {path!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.path = path


class InvalidSeed(DerivationError):
    pass


class ScalarOutOfRange(DerivationError):
    """The derived scalar is zero or not below the curve order."""

    def __init__(self, index: int | None = None):
        where = "master key" if index is None else f"child index {index}"
        super().__init__(f"derived scalar out of range at {where}")
        self.index = index


# The name used for the child case in BIP-32 prose.
InvalidChild = ScalarOutOfRange


# ── Signing & addressing ────────────────────────────────────────────

class SigningError(StarlaneError):
    pass


class InvalidKey(SigningError):
    pass


class AddressError(StarlaneError):
    pass


class InvalidPrefix(AddressError):
    def __init__(self, prefix: str, reason: str):
        super().__init__(f"invalid address prefix {prefix!r}: {reason}")
        self.prefix = prefix


class InvalidAddress(AddressError):
    pass


# ── Transaction assembly ────────────────────────────────────────────

class EncodingError(StarlaneError):
    pass


class MalformedPayload(EncodingError):
    pass


# ── Node-facing errors ──────────────────────────────────────────────

class _NodeError(StarlaneError):
    """Mixin carrying the node's diagnostic details."""

    def __init__(
        self,
        message: str = "",
        *,
        code: int | None = None,
        codespace: str = "",
        log: str = "",
    ):
        self.code = code
        self.codespace = codespace
        self.log = log
        detail = message or log or self.__class__.__name__
        if code is not None:
            detail = f"{detail} (codespace={codespace or '-'} code={code})"
        super().__init__(detail)


class SequenceError(_NodeError):
    pass


class StaleSequence(SequenceError):
    """The node rejected the transaction's sequence number."""


class UnknownAccount(SequenceError):
    """The node has never seen the account (no funds received yet)."""


class BroadcastError(_NodeError):
    pass


class InvalidSignature(BroadcastError):
    pass


class InsufficientFee(BroadcastError):
    pass


class MempoolFull(BroadcastError):
    pass


class NodeUnavailable(BroadcastError):
    pass


class TxRejected(BroadcastError):
    """Any other synchronous rejection reported by the node."""


class ConfirmationTimeout(StarlaneError):
    def __init__(self, tx_hash: str, waited: float):
        super().__init__(f"tx {tx_hash} not included after {waited:.1f}s")
        self.tx_hash = tx_hash
        self.waited = waited
