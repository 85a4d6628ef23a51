"""
Transaction messages.

A :class:`Msg` is a type URL plus the already-encoded protobuf value.
Nothing in the signing pipeline looks inside ``value``; it is carried
through as an ``Any``.  Builders for a few common SDK messages are
provided for convenience; other message kinds can be built by encoding
the value elsewhere and wrapping it in ``Msg``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable

from starlane_core import proto
from starlane_core.coin import Coin
from starlane_core.errors import MalformedPayload

MSG_SEND_TYPE_URL = "/cosmos.bank.v1beta1.MsgSend"
MSG_DELEGATE_TYPE_URL = "/cosmos.staking.v1beta1.MsgDelegate"
MSG_UNDELEGATE_TYPE_URL = "/cosmos.staking.v1beta1.MsgUndelegate"
MSG_WITHDRAW_DELEGATOR_REWARD_TYPE_URL = "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward"
MSG_VOTE_TYPE_URL = "/cosmos.gov.v1beta1.MsgVote"
MSG_TRANSFER_TYPE_URL = "/ibc.applications.transfer.v1.MsgTransfer"


@dataclass(frozen=True)
class Msg:
    type_url: str
    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.type_url, str):
            raise MalformedPayload(f"type URL must be str, not {type(self.type_url).__name__}")
        if not self.type_url.startswith("/"):
            raise MalformedPayload(f"type URL must start with '/': {self.type_url!r}")
        if not isinstance(self.value, (bytes, bytearray)):
            raise MalformedPayload("message value must be bytes")
        object.__setattr__(self, "value", bytes(self.value))

    def to_any(self) -> bytes:
        return proto.encode_any(self.type_url, self.value)

    def __repr__(self) -> str:
        return f"Msg({self.type_url}, {len(self.value)} bytes)"


def bank_send(from_address: str, to_address: str, coins: Iterable[Coin]) -> Msg:
    """cosmos.bank.v1beta1.MsgSend"""
    value = (
        proto.string_field(1, str(from_address))
        + proto.string_field(2, str(to_address))
        + proto.repeated_message_field(3, [c.to_proto() for c in coins])
    )
    return Msg(MSG_SEND_TYPE_URL, value)


def _delegation(delegator: str, validator: str, amount: Coin) -> bytes:
    return (
        proto.string_field(1, delegator)
        + proto.string_field(2, validator)
        + proto.message_field(3, amount.to_proto())
    )


def delegate(delegator: str, validator: str, amount: Coin) -> Msg:
    return Msg(MSG_DELEGATE_TYPE_URL, _delegation(delegator, validator, amount))


def undelegate(delegator: str, validator: str, amount: Coin) -> Msg:
    return Msg(MSG_UNDELEGATE_TYPE_URL, _delegation(delegator, validator, amount))


def withdraw_delegator_reward(delegator: str, validator: str) -> Msg:
    value = proto.string_field(1, delegator) + proto.string_field(2, validator)
    return Msg(MSG_WITHDRAW_DELEGATOR_REWARD_TYPE_URL, value)


class VoteOption(IntEnum):
    YES = 1
    ABSTAIN = 2
    NO = 3
    NO_WITH_VETO = 4


def vote(proposal_id: int, voter: str, option: VoteOption) -> Msg:
    value = (
        proto.uint64_field(1, proposal_id)
        + proto.string_field(2, voter)
        + proto.uint64_field(3, int(option))
    )
    return Msg(MSG_VOTE_TYPE_URL, value)


def ibc_transfer(
    sender: str,
    receiver: str,
    token: Coin,
    source_channel: str,
    source_port: str = "transfer",
    timeout_height: tuple[int, int] = (0, 0),
    timeout_timestamp: int = 0,
    memo: str = "",
) -> Msg:
    """
    ibc.applications.transfer.v1.MsgTransfer

    ``timeout_height`` is ``(revision_number, revision_height)`` on the
    destination chain; ``timeout_timestamp`` is in nanoseconds since the
    epoch.  At least one of them must be set.
    """
    revision_number, revision_height = timeout_height
    if revision_height == 0 and timeout_timestamp == 0:
        raise MalformedPayload("IBC transfer needs a timeout height or timestamp")
    height = proto.uint64_field(1, revision_number) + proto.uint64_field(2, revision_height)
    value = (
        proto.string_field(1, source_port)
        + proto.string_field(2, source_channel)
        + proto.message_field(3, token.to_proto())
        + proto.string_field(4, sender)
        + proto.string_field(5, receiver)
        + proto.message_field(6, height)
        + proto.uint64_field(7, timeout_timestamp)
        + proto.string_field(8, memo)
    )
    return Msg(MSG_TRANSFER_TYPE_URL, value)
