"""
Transaction assembly for Starlane (SIGN_MODE_DIRECT).

Flow for one signer::

    tx   = UnsignedTx(msgs=[...], fee=Fee(...), signers=[SignerData(...)])
    doc  = build_sign_doc(tx, chain_id, account_number)
    sig  = crypto_utils.sign(private_key, doc.to_bytes())
    raw  = assemble(tx, [sig]).to_bytes()

With several signers every signer signs its own SignDoc.  The body and
auth-info bytes are shared, only the account number differs, and the
signatures must be assembled in the same order as the signer infos.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from starlane_core import proto
from starlane_core.coin import Fee
from starlane_core.crypto_utils import SIGNATURE_BYTES, check_public_key, sha256
from starlane_core.errors import EncodingError, InvalidKey, MalformedPayload
from starlane_core.msg import Msg

MAX_MEMO_CHARACTERS = 256


@dataclass(frozen=True)
class SignerData:
    """Per-signer metadata that ends up in AuthInfo and SignDoc."""

    public_key: bytes
    sequence: int
    account_number: int

    def __post_init__(self) -> None:
        try:
            check_public_key(bytes(self.public_key))
        except InvalidKey as exc:
            raise MalformedPayload(f"signer public key: {exc}") from exc
        object.__setattr__(self, "public_key", bytes(self.public_key))
        if self.sequence < 0 or self.account_number < 0:
            raise MalformedPayload("sequence and account number must be >= 0")

    def signer_info(self) -> bytes:
        return proto.encode_signer_info(self.public_key, self.sequence)


@dataclass(frozen=True)
class UnsignedTx:
    msgs: Tuple[Msg, ...]
    fee: Fee
    signers: Tuple[SignerData, ...]
    memo: str = ""
    timeout_height: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "msgs", tuple(self.msgs))
        object.__setattr__(self, "signers", tuple(self.signers))
        if not self.msgs:
            raise MalformedPayload("transaction has no messages")
        if not self.signers:
            raise MalformedPayload("transaction has no signers")
        if len(self.memo) > MAX_MEMO_CHARACTERS:
            raise MalformedPayload(
                f"memo is {len(self.memo)} characters, limit is {MAX_MEMO_CHARACTERS}"
            )
        if self.timeout_height < 0:
            raise MalformedPayload("timeout height must be >= 0")

    def body_bytes(self) -> bytes:
        return proto.encode_tx_body(
            [m.to_any() for m in self.msgs], self.memo, self.timeout_height,
        )

    def auth_info_bytes(self) -> bytes:
        return proto.encode_auth_info(
            [s.signer_info() for s in self.signers], self.fee.to_proto(),
        )


@dataclass(frozen=True)
class SignDoc:
    body_bytes: bytes
    auth_info_bytes: bytes
    chain_id: str
    account_number: int

    def to_bytes(self) -> bytes:
        """The exact bytes a signer hashes and signs."""
        return proto.encode_sign_doc(
            self.body_bytes, self.auth_info_bytes, self.chain_id, self.account_number,
        )


@dataclass(frozen=True)
class SignedTx:
    body_bytes: bytes
    auth_info_bytes: bytes
    signatures: Tuple[bytes, ...] = field(default_factory=tuple)

    def to_bytes(self) -> bytes:
        """TxRaw encoding, as submitted to the node."""
        return proto.encode_tx_raw(self.body_bytes, self.auth_info_bytes, self.signatures)

    @property
    def tx_hash(self) -> str:
        return sha256(self.to_bytes()).hex().upper()


# ===================================================================
#  Assembly
# ===================================================================

def build_sign_doc(unsigned_tx: UnsignedTx, chain_id: str, account_number: int) -> SignDoc:
    if account_number < 0:
        raise MalformedPayload("account number must be >= 0")
    return SignDoc(
        body_bytes=unsigned_tx.body_bytes(),
        auth_info_bytes=unsigned_tx.auth_info_bytes(),
        chain_id=chain_id,
        account_number=account_number,
    )


def sign_docs(unsigned_tx: UnsignedTx, chain_id: str) -> List[SignDoc]:
    """One SignDoc per signer, in signer order."""
    body = unsigned_tx.body_bytes()
    auth_info = unsigned_tx.auth_info_bytes()
    return [
        SignDoc(body, auth_info, chain_id, signer.account_number)
        for signer in unsigned_tx.signers
    ]


def assemble(unsigned_tx: UnsignedTx, signatures: Sequence[bytes]) -> SignedTx:
    """Attach signatures; ``signatures[i]`` belongs to ``signers[i]``."""
    if len(signatures) != len(unsigned_tx.signers):
        raise EncodingError(
            f"{len(signatures)} signatures for {len(unsigned_tx.signers)} signers"
        )
    for i, sig in enumerate(signatures):
        if len(sig) != SIGNATURE_BYTES:
            raise EncodingError(f"signature {i} is {len(sig)} bytes, expected 64")
    return SignedTx(
        body_bytes=unsigned_tx.body_bytes(),
        auth_info_bytes=unsigned_tx.auth_info_bytes(),
        signatures=tuple(bytes(s) for s in signatures),
    )


def sign_tx(unsigned_tx: UnsignedTx, chain_id: str, keys: Iterable) -> SignedTx:
    """
    Sign with every key and assemble.

    ``keys`` are :class:`starlane_core.wallet.PrivateKey` objects (anything
    with ``public_key`` and ``sign(bytes)``), in signer order.
    """
    keys = list(keys)
    if len(keys) != len(unsigned_tx.signers):
        raise EncodingError(f"{len(keys)} keys for {len(unsigned_tx.signers)} signers")
    signatures = []
    for key, signer, doc in zip(keys, unsigned_tx.signers, sign_docs(unsigned_tx, chain_id)):
        if bytes(key.public_key) != signer.public_key:
            raise EncodingError("key does not match signer public key; check signer order")
        signatures.append(key.sign(doc.to_bytes()))
    return assemble(unsigned_tx, signatures)
