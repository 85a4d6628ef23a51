"""
Keys and wallets for Starlane.

  - PrivateKey: a secp256k1 scalar, from a seed phrase, a secret or hex
  - PublicKey: the compressed point, with address rendering and verify
  - Wallet: a private key bound to an address prefix, signs transactions

The private scalar never leaves :class:`PrivateKey` except through the
explicit :meth:`PrivateKey.to_hex`; ``repr()`` does not show it.
"""

from __future__ import annotations

import secrets
from typing import Any, Iterable

from starlane_core import crypto_utils
from starlane_core.address import Address, check_prefix
from starlane_core.coin import Fee
from starlane_core.hd_keys import COSMOS_PATH, ExtendedKey, derive_path
from starlane_core.mnemonic import SeedPhrase, phrase_from_entropy, seed_from_phrase, validate
from starlane_core.msg import Msg
from starlane_core.transaction import (
    SignedTx,
    SignerData,
    UnsignedTx,
    assemble,
    build_sign_doc,
)

DEFAULT_PREFIX = "cosmos"


class PublicKey:
    """33-byte compressed secp256k1 public key."""

    __slots__ = ("_key",)

    def __init__(self, key: bytes):
        self._key = crypto_utils.check_public_key(bytes(key))

    @classmethod
    def from_hex(cls, text: str) -> PublicKey:
        return cls(bytes.fromhex(text))

    def __bytes__(self) -> bytes:
        return self._key

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PublicKey) and other._key == self._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return f"PublicKey({self._key.hex()})"

    def hex(self) -> str:
        return self._key.hex()

    def to_address(self) -> Address:
        return Address.from_public_key(self._key)

    def address(self, prefix: str = DEFAULT_PREFIX) -> str:
        return self.to_address().to_bech32(prefix)

    def verify(self, message: bytes, signature: bytes) -> bool:
        return crypto_utils.verify(self._key, message, signature)


class PrivateKey:
    """A secp256k1 private scalar in ``[1, n-1]``."""

    __slots__ = ("_secret", "_public")

    def __init__(self, secret: bytes):
        # public_key() validates length and range
        self._public = PublicKey(crypto_utils.public_key(bytes(secret)))
        self._secret = bytes(secret)

    # ---- factory methods ----

    @classmethod
    def from_phrase(cls, phrase: str | SeedPhrase, passphrase: str = "",
                    path: str = COSMOS_PATH) -> PrivateKey:
        """Validate a BIP-39 phrase and derive the key at ``path``."""
        canonical = validate(phrase)
        return cls.from_extended(derive_path(seed_from_phrase(canonical, passphrase), path))

    @classmethod
    def from_extended(cls, node: ExtendedKey) -> PrivateKey:
        return cls(node.private_key)

    @classmethod
    def from_secret(cls, secret: bytes) -> PrivateKey:
        """
        Deterministic key from arbitrary bytes, for tests and tooling.

        The scalar is ``SHA256(secret) mod (n - 1) + 1``, which always lands
        in range.
        """
        digest = int.from_bytes(crypto_utils.sha256(secret), "big")
        scalar = digest % (crypto_utils.CURVE_ORDER - 1) + 1
        return cls(scalar.to_bytes(32, "big"))

    @classmethod
    def from_hex(cls, text: str) -> PrivateKey:
        return cls(bytes.fromhex(text))

    @classmethod
    def generate(cls) -> PrivateKey:
        while True:
            candidate = secrets.token_bytes(32)
            if crypto_utils.scalar_in_range(int.from_bytes(candidate, "big")):
                return cls(candidate)

    # ---- derived artifacts ----

    @property
    def public_key(self) -> PublicKey:
        return self._public

    def address(self, prefix: str = DEFAULT_PREFIX) -> str:
        return self._public.address(prefix)

    def sign(self, message: bytes) -> bytes:
        """64-byte low-S signature over ``SHA256(message)``."""
        return crypto_utils.sign(self._secret, message)

    def to_hex(self) -> str:
        return self._secret.hex()

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PrivateKey) and other._public == self._public

    def __hash__(self) -> int:
        return hash(self._public)

    def __repr__(self) -> str:
        return f"PrivateKey(public_key={self._public.hex()})"


class Wallet:
    """A private key bound to a chain's address prefix."""

    def __init__(self, private_key: PrivateKey, prefix: str = DEFAULT_PREFIX):
        self.private_key = private_key
        self.prefix = check_prefix(prefix)
        self.address = private_key.address(prefix)

    # ---- factory methods ----

    @classmethod
    def from_phrase(cls, phrase: str | SeedPhrase, passphrase: str = "",
                    path: str = COSMOS_PATH, prefix: str = DEFAULT_PREFIX) -> Wallet:
        return cls(PrivateKey.from_phrase(phrase, passphrase, path), prefix)

    @classmethod
    def from_config(cls, phrase: str | SeedPhrase, config: Any,
                    passphrase: str = "") -> Wallet:
        """Derive at ``chain.derivation_path`` and render with ``chain.prefix``."""
        chain = getattr(config, "chain", config)
        return cls.from_phrase(phrase, passphrase, chain.derivation_path, chain.prefix)

    @classmethod
    def create(cls, strength: int = 256,
               prefix: str = DEFAULT_PREFIX) -> tuple[SeedPhrase, Wallet]:
        """
        Generate a fresh phrase and the wallet at the default path.
        Returns (phrase, wallet).
        """
        phrase = phrase_from_entropy(strength)
        return phrase, cls.from_phrase(phrase, prefix=prefix)

    # ---- signing ----

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key

    def signer_data(self, sequence: int, account_number: int) -> SignerData:
        return SignerData(bytes(self.public_key), sequence, account_number)

    def build_tx(self, msgs: Iterable[Msg], fee: Fee, sequence: int,
                 account_number: int, memo: str = "",
                 timeout_height: int = 0) -> UnsignedTx:
        """Single-signer transaction with this wallet as the signer."""
        return UnsignedTx(
            msgs=tuple(msgs),
            fee=fee,
            signers=(self.signer_data(sequence, account_number),),
            memo=memo,
            timeout_height=timeout_height,
        )

    def sign_tx(self, unsigned_tx: UnsignedTx, chain_id: str,
                account_number: int) -> SignedTx:
        """Sign a single-signer transaction."""
        doc = build_sign_doc(unsigned_tx, chain_id, account_number)
        return assemble(unsigned_tx, [self.private_key.sign(doc.to_bytes())])

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
