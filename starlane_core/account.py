"""
Account helper for Starlane.

High-level account abstraction that combines a wallet with a
broadcaster and keeps a local history of what was submitted.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from starlane_core.address import Address
from starlane_core.broadcast import Broadcaster, SubmissionResult
from starlane_core.coin import Coin, Fee
from starlane_core.errors import MalformedPayload
from starlane_core.msg import Msg, bank_send, delegate
from starlane_core.wallet import Wallet


class Account:
    """
    A wallet bound to a broadcaster, with convenience senders.

    Senders take an explicit ``fee``; when it is omitted ``default_fee`` is
    used, and with neither the send is refused before anything is signed.
    """

    def __init__(self, wallet: Wallet, broadcaster: Broadcaster,
                 default_fee: Optional[Fee] = None):
        self.wallet = wallet
        self.broadcaster = broadcaster
        self.default_fee = default_fee
        self.address: str = wallet.address
        self.history: list[SubmissionResult] = []

    @classmethod
    def from_phrase(cls, phrase: str, broadcaster: Broadcaster, passphrase: str = "",
                    prefix: str = "cosmos") -> Account:
        return cls(Wallet.from_phrase(phrase, passphrase, prefix=prefix), broadcaster)

    @classmethod
    def from_config(cls, phrase: str, config: Any, broadcaster: Optional[Broadcaster] = None,
                    passphrase: str = "") -> Account:
        """Wallet, broadcaster and default fee all taken from a ``StarlaneConfig``."""
        return cls(
            Wallet.from_config(phrase, config, passphrase),
            broadcaster or Broadcaster.from_config(config),
            config.chain.default_fee(),
        )

    # ---- senders ----

    async def send(self, msgs: Iterable[Msg], fee: Optional[Fee] = None, memo: str = "",
                   wait: bool = False, deadline: Optional[float] = None) -> SubmissionResult:
        """Submit ``msgs``; with ``wait`` also wait for inclusion."""
        if fee is None:
            fee = self.default_fee
        if fee is None:
            raise MalformedPayload("no fee given and the account has no default fee")
        if wait:
            result = await self.broadcaster.send_and_confirm(
                self.wallet, msgs, fee, memo, deadline=deadline,
            )
        else:
            result = await self.broadcaster.send(self.wallet, msgs, fee, memo)
        self.history.append(result)
        return result

    async def send_coins(
        self,
        destination: str | Address,
        coins: Iterable[Coin],
        fee: Optional[Fee] = None,
        memo: str = "",
        wait: bool = False,
        deadline: Optional[float] = None,
    ) -> SubmissionResult:
        """Build and submit a bank send from this account."""
        if isinstance(destination, Address):
            destination = destination.to_bech32(self.wallet.prefix)
        else:
            # validates the checksum and the chain prefix
            Address.from_bech32(destination, self.wallet.prefix)
        msg = bank_send(self.address, destination, coins)
        return await self.send([msg], fee, memo, wait, deadline)

    async def delegate(self, validator: str, amount: Coin, fee: Optional[Fee] = None,
                       memo: str = "", wait: bool = False) -> SubmissionResult:
        return await self.send([delegate(self.address, validator, amount)], fee, memo, wait)

    def get_history(self) -> list[SubmissionResult]:
        return list(self.history)

    def __repr__(self) -> str:
        return f"Account({self.address})"
