"""
Minimal protobuf (proto3) wire encoding for Cosmos transactions.

Only what SIGN_MODE_DIRECT needs is implemented:

  - varint (wire type 0) and length-delimited (wire type 2) fields
  - proto3 default omission: zero integers and empty strings/bytes are
    not written, embedded messages are written whenever present
  - the handful of ``cosmos.tx.v1beta1`` messages that make up a
    transaction

The node re-encodes the same structures to verify a signature, so field
numbers and ordering here must follow the ``.proto`` definitions exactly.
Fields are always written in ascending field-number order.

A small reader (:func:`iter_fields`) is included for inspecting encoded
messages.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence, Tuple

from starlane_core.errors import MalformedPayload

WIRE_VARINT = 0
WIRE_LEN = 2

SIGN_MODE_DIRECT = 1
SECP256K1_PUBKEY_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"

_UINT64_MAX = (1 << 64) - 1


# ===================================================================
#  Primitives
# ===================================================================

def encode_varint(value: int) -> bytes:
    """Base-128 varint for an unsigned 64-bit value."""
    if value < 0 or value > _UINT64_MAX:
        raise MalformedPayload(f"varint out of uint64 range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> Tuple[int, int]:
    """Return ``(value, next_pos)``."""
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise MalformedPayload("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise MalformedPayload("varint too long")


def _key(field: int, wire_type: int) -> bytes:
    return encode_varint((field << 3) | wire_type)


def uint64_field(field: int, value: int) -> bytes:
    if value == 0:
        return b""
    return _key(field, WIRE_VARINT) + encode_varint(value)


def bytes_field(field: int, value: bytes) -> bytes:
    if not value:
        return b""
    return _key(field, WIRE_LEN) + encode_varint(len(value)) + value


def string_field(field: int, value: str) -> bytes:
    return bytes_field(field, value.encode("utf-8"))


def message_field(field: int, value: Optional[bytes]) -> bytes:
    """An embedded message: written (possibly empty) unless absent."""
    if value is None:
        return b""
    return _key(field, WIRE_LEN) + encode_varint(len(value)) + value


def repeated_message_field(field: int, values: Iterable[bytes]) -> bytes:
    return b"".join(message_field(field, v) for v in values)


def repeated_bytes_field(field: int, values: Iterable[bytes]) -> bytes:
    # elements of a repeated field are written even when empty
    return b"".join(
        _key(field, WIRE_LEN) + encode_varint(len(v)) + v for v in values
    )


def iter_fields(data: bytes) -> Iterator[Tuple[int, int, object]]:
    """Yield ``(field_number, wire_type, value)``; value is int or bytes."""
    pos = 0
    while pos < len(data):
        key, pos = decode_varint(data, pos)
        field, wire_type = key >> 3, key & 7
        if wire_type == WIRE_VARINT:
            value, pos = decode_varint(data, pos)
            yield field, wire_type, value
        elif wire_type == WIRE_LEN:
            length, pos = decode_varint(data, pos)
            if pos + length > len(data):
                raise MalformedPayload("truncated length-delimited field")
            yield field, wire_type, data[pos : pos + length]
            pos += length
        else:
            raise MalformedPayload(f"unsupported wire type {wire_type}")


# ===================================================================
#  Cosmos messages
# ===================================================================

def encode_any(type_url: str, value: bytes) -> bytes:
    """google.protobuf.Any"""
    return string_field(1, type_url) + bytes_field(2, value)


def encode_coin(denom: str, amount: int) -> bytes:
    """cosmos.base.v1beta1.Coin (amount is a decimal string)."""
    return string_field(1, denom) + string_field(2, str(amount))


def encode_pubkey_any(public_key: bytes) -> bytes:
    return encode_any(SECP256K1_PUBKEY_TYPE_URL, bytes_field(1, public_key))


def encode_tx_body(messages: Sequence[bytes], memo: str, timeout_height: int) -> bytes:
    """TxBody; ``messages`` are already-encoded Any values."""
    return (
        repeated_message_field(1, messages)
        + string_field(2, memo)
        + uint64_field(3, timeout_height)
    )


def encode_mode_info_single(mode: int = SIGN_MODE_DIRECT) -> bytes:
    return message_field(1, uint64_field(1, mode))


def encode_signer_info(public_key: bytes, sequence: int) -> bytes:
    return (
        message_field(1, encode_pubkey_any(public_key))
        + message_field(2, encode_mode_info_single())
        + uint64_field(3, sequence)
    )


def encode_fee(coins: Sequence[bytes], gas_limit: int, payer: str = "", granter: str = "") -> bytes:
    return (
        repeated_message_field(1, coins)
        + uint64_field(2, gas_limit)
        + string_field(3, payer)
        + string_field(4, granter)
    )


def encode_auth_info(signer_infos: Sequence[bytes], fee: bytes) -> bytes:
    return repeated_message_field(1, signer_infos) + message_field(2, fee)


def encode_sign_doc(body_bytes: bytes, auth_info_bytes: bytes,
                    chain_id: str, account_number: int) -> bytes:
    return (
        bytes_field(1, body_bytes)
        + bytes_field(2, auth_info_bytes)
        + string_field(3, chain_id)
        + uint64_field(4, account_number)
    )


def encode_tx_raw(body_bytes: bytes, auth_info_bytes: bytes,
                  signatures: Sequence[bytes]) -> bytes:
    return (
        bytes_field(1, body_bytes)
        + bytes_field(2, auth_info_bytes)
        + repeated_bytes_field(3, signatures)
    )
