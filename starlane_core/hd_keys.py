"""
Hierarchical deterministic key derivation (BIP-32) for Starlane.

Path notation: ``m/44'/118'/account'/0/index`` (118 is the Cosmos coin type).

Derivation is a pure fold over path segments starting from the root key::

    root = root_key(seed)
    leaf = derive_path(seed, "m/44'/118'/0'/0/0")

A child whose scalar lands outside ``[1, n-1]`` raises ScalarOutOfRange
instead of silently moving to the next index, so a nominal path always
names exactly one key.  Callers that want BIP-32's "proceed with the next
index" behaviour use :func:`derive_child_skipping` explicitly.
"""

from __future__ import annotations

import re
import struct
import threading
from dataclasses import dataclass
from functools import reduce
from typing import Iterable

from starlane_core.crypto_utils import (
    CURVE_ORDER,
    add_scalar_to_point,
    hash160,
    hmac_sha512,
    public_key,
    scalar_in_range,
)
from starlane_core.errors import (
    InvalidKey,
    InvalidPath,
    InvalidSeed,
    ScalarOutOfRange,
)

HARDENED = 0x80000000
ROOT_HMAC_KEY = b"Bitcoin seed"
COSMOS_PATH = "m/44'/118'/0'/0/0"

_SEGMENT_RE = re.compile(r"^(\d+)(['hH]?)$")


# ===================================================================
#  Paths
# ===================================================================

@dataclass(frozen=True)
class PathSegment:
    index: int
    hardened: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.index < HARDENED:
            raise InvalidPath(str(self.index), "index must be in [0, 2^31)")

    @property
    def raw_index(self) -> int:
        """The 32-bit index as it appears in the HMAC input."""
        return self.index + HARDENED if self.hardened else self.index

    def __str__(self) -> str:
        return f"{self.index}'" if self.hardened else str(self.index)


def parse_path(path: str) -> tuple[PathSegment, ...]:
    """Parse ``m/a'/b'/c'/d/e`` into segments. ``m`` alone is the root."""
    text = path.strip()
    parts = text.split("/")
    if parts[0] != "m":
        raise InvalidPath(path, "must start with 'm'")
    segments = []
    for part in parts[1:]:
        match = _SEGMENT_RE.match(part)
        if match is None:
            raise InvalidPath(path, f"bad segment {part!r}")
        index = int(match.group(1))
        if index >= HARDENED:
            raise InvalidPath(path, f"index {index} out of range")
        segments.append(PathSegment(index, bool(match.group(2))))
    return tuple(segments)


def format_path(segments: Iterable[PathSegment]) -> str:
    return "/".join(["m", *(str(s) for s in segments)])


def _as_segments(path: str | Iterable[PathSegment]) -> tuple[PathSegment, ...]:
    if isinstance(path, str):
        return parse_path(path)
    return tuple(path)


# ===================================================================
#  Extended keys
# ===================================================================

@dataclass(frozen=True)
class ExtendedPublicKey:
    """Watch-only node: compressed point + chain code."""

    public_key: bytes
    chain_code: bytes
    depth: int = 0
    index: int = 0
    parent_fingerprint: bytes = b"\x00" * 4

    def __repr__(self) -> str:
        return (f"ExtendedPublicKey(depth={self.depth}, index={self.index}, "
                f"public_key={self.public_key.hex()})")

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.public_key)[:4]

    def derive_child(self, index: int) -> ExtendedPublicKey:
        """Non-hardened child of a public node (point addition)."""
        if not 0 <= index < HARDENED:
            raise InvalidPath(str(index), "hardened children need the private key")
        I = hmac_sha512(self.chain_code, self.public_key + struct.pack(">I", index))
        il = int.from_bytes(I[:32], "big")
        if il >= CURVE_ORDER:
            raise ScalarOutOfRange(index)
        try:
            child = add_scalar_to_point(self.public_key, il)
        except InvalidKey:
            raise ScalarOutOfRange(index) from None
        return ExtendedPublicKey(
            public_key=child,
            chain_code=I[32:],
            depth=self.depth + 1,
            index=index,
            parent_fingerprint=self.fingerprint,
        )


@dataclass(frozen=True)
class ExtendedKey:
    """Private node: 32-byte scalar + 32-byte chain code."""

    private_key: bytes
    chain_code: bytes
    depth: int = 0
    index: int = 0
    parent_fingerprint: bytes = b"\x00" * 4

    def __repr__(self) -> str:
        return f"ExtendedKey(depth={self.depth}, index={self.index})"

    @property
    def public_key(self) -> bytes:
        return public_key(self.private_key)

    @property
    def fingerprint(self) -> bytes:
        """First 4 bytes of Hash160 of the compressed public key."""
        return hash160(self.public_key)[:4]

    def public(self) -> ExtendedPublicKey:
        return ExtendedPublicKey(
            public_key=self.public_key,
            chain_code=self.chain_code,
            depth=self.depth,
            index=self.index,
            parent_fingerprint=self.parent_fingerprint,
        )


def root_key(seed: bytes) -> ExtendedKey:
    """Master node from a BIP-39 (or raw BIP-32) seed."""
    if not 16 <= len(seed) <= 64:
        raise InvalidSeed(f"seed must be 16..64 bytes, got {len(seed)}")
    I = hmac_sha512(ROOT_HMAC_KEY, seed)
    if not scalar_in_range(int.from_bytes(I[:32], "big")):
        raise ScalarOutOfRange(None)
    return ExtendedKey(private_key=I[:32], chain_code=I[32:])


def derive_child(parent: ExtendedKey, index: int, hardened: bool) -> ExtendedKey:
    """
    One CKDpriv step.

    Hardened: ``HMAC-SHA512(c, 0x00 || k || ser32(i + 2^31))``.
    Normal:   ``HMAC-SHA512(c, serP(K) || ser32(i))``.
    The left half is added to the parent scalar mod n; the right half is
    the child chain code.
    """
    segment = PathSegment(index, hardened)
    if hardened:
        data = b"\x00" + parent.private_key + struct.pack(">I", segment.raw_index)
    else:
        data = parent.public_key + struct.pack(">I", segment.raw_index)

    I = hmac_sha512(parent.chain_code, data)
    il = int.from_bytes(I[:32], "big")
    child = (il + int.from_bytes(parent.private_key, "big")) % CURVE_ORDER
    if il >= CURVE_ORDER or child == 0:
        raise ScalarOutOfRange(segment.raw_index)

    return ExtendedKey(
        private_key=child.to_bytes(32, "big"),
        chain_code=I[32:],
        depth=parent.depth + 1,
        index=segment.raw_index,
        parent_fingerprint=parent.fingerprint,
    )


def derive_child_skipping(
    parent: ExtendedKey, index: int, hardened: bool, max_skips: int = 16,
) -> tuple[ExtendedKey, int]:
    """
    BIP-32 "proceed with the next index" policy, opt-in.

    Returns ``(child, index_used)``; the key for the nominal index may thus
    belong to a later index.
    """
    for candidate in range(index, min(index + max_skips + 1, HARDENED)):
        try:
            return derive_child(parent, candidate, hardened), candidate
        except ScalarOutOfRange:
            continue
    raise ScalarOutOfRange(index)


def derive_from(node: ExtendedKey, path: str | Iterable[PathSegment]) -> ExtendedKey:
    """Apply a path to an existing node."""
    return reduce(
        lambda key, seg: derive_child(key, seg.index, seg.hardened),
        _as_segments(path),
        node,
    )


def derive_path(seed: bytes, path: str | Iterable[PathSegment]) -> ExtendedKey:
    """Derive the node at ``path`` below ``root_key(seed)``."""
    return derive_from(root_key(seed), path)


# ===================================================================
#  Cached tree
# ===================================================================

class KeyTree:
    """
    Derivation tree over one seed with a path -> key cache.

    Intermediate nodes are cached too, so deriving ``.../0/1`` after
    ``.../0/0`` only costs the last step.
    """

    def __init__(self, seed: bytes):
        self._root = root_key(seed)
        self._cache: dict[tuple[PathSegment, ...], ExtendedKey] = {(): self._root}
        self._lock = threading.Lock()

    @property
    def root(self) -> ExtendedKey:
        return self._root

    def derive(self, path: str | Iterable[PathSegment]) -> ExtendedKey:
        segments = _as_segments(path)
        with self._lock:
            hit = self._cache.get(segments)
            if hit is not None:
                return hit
            depth = len(segments)
            while segments[:depth] not in self._cache:
                depth -= 1
            node = self._cache[segments[:depth]]
        # derivation runs outside the lock; results are pure so races only
        # duplicate work
        for i in range(depth, len(segments)):
            seg = segments[i]
            node = derive_child(node, seg.index, seg.hardened)
            with self._lock:
                self._cache.setdefault(segments[: i + 1], node)
        return node

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache = {(): self._root}
