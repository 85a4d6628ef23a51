"""
Coins and fees.

Amounts are plain Python ints so that 256-bit token supplies add up
exactly; they are carried on the wire as decimal strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Tuple

from starlane_core import proto
from starlane_core.errors import MalformedPayload

# Same shape the Cosmos SDK accepts for denominations.
DENOM_PATTERN = r"[a-zA-Z][a-zA-Z0-9/:._-]{2,127}"
_DENOM_RE = re.compile(rf"^{DENOM_PATTERN}$")
_COIN_RE = re.compile(rf"^\s*([0-9]+)\s*({DENOM_PATTERN})\s*$")


def check_denom(denom: str) -> str:
    if not isinstance(denom, str) or not _DENOM_RE.match(denom):
        raise MalformedPayload(f"invalid denom: {denom!r}")
    return denom


@dataclass(frozen=True)
class Coin:
    amount: int
    denom: str

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise MalformedPayload(f"coin amount must be an int, got {self.amount!r}")
        if self.amount < 0:
            raise MalformedPayload(f"negative coin amount: {self.amount}")
        check_denom(self.denom)

    @classmethod
    def parse(cls, text: str) -> Coin:
        """``"100uatom"`` -> ``Coin(100, "uatom")``."""
        match = _COIN_RE.match(text)
        if match is None:
            raise MalformedPayload(f"cannot parse coin: {text!r}")
        return cls(int(match.group(1)), match.group(2))

    def __add__(self, other: Coin) -> Coin:
        if not isinstance(other, Coin):
            return NotImplemented
        if other.denom != self.denom:
            raise MalformedPayload(f"cannot add {other.denom} to {self.denom}")
        return Coin(self.amount + other.amount, self.denom)

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"

    def to_proto(self) -> bytes:
        return proto.encode_coin(self.denom, self.amount)


def parse_coins(text: str) -> Tuple[Coin, ...]:
    """Comma-separated list, e.g. ``"100uatom,5stake"``. Empty -> ()."""
    if not text.strip():
        return ()
    return tuple(Coin.parse(part) for part in text.split(","))


def sorted_coins(coins: Iterable[Coin]) -> Tuple[Coin, ...]:
    return tuple(sorted(coins, key=lambda c: c.denom))


@dataclass(frozen=True)
class Fee:
    """Fee coins, gas limit and optional payer / granter addresses."""

    amount: Tuple[Coin, ...] = field(default_factory=tuple)
    gas_limit: int = 200_000
    payer: str = ""
    granter: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", tuple(self.amount))
        if not 0 <= self.gas_limit < 1 << 64:
            raise MalformedPayload(f"gas limit out of range: {self.gas_limit}")

    def to_proto(self) -> bytes:
        # denom order is normalised so equal fees encode identically
        coins = [c.to_proto() for c in sorted_coins(self.amount)]
        return proto.encode_fee(coins, self.gas_limit, self.payer, self.granter)
