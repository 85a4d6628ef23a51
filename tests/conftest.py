"""
Shared pytest fixtures for the Starlane test suite.
"""

import pytest

from starlane_core.coin import Coin, Fee
from starlane_core.network import AccountInfo
from starlane_core.sequence import SequenceTracker
from starlane_core.wallet import PrivateKey, Wallet

ABANDON_PHRASE = " ".join(["abandon"] * 11 + ["about"])
ABANDON_ADDRESS = "cosmos19rl4cm2hmr8afy4kldpxz3fka4jguq0auqdal4"
SECRET_ADDRESS = "cosmos1nx7vqq8hsy8chwe27mcr4cmazdwus7zjl2ds0p"
CHAIN_ID = "starlane-test-1"


class FakeNode:
    """
    In-memory stand-in for NodeClient.

    ``broadcast_responses`` is consumed in order; once exhausted every
    broadcast is accepted.  ``included`` maps tx hash -> tx_response and is
    only reported after ``polls_until_included`` lookups.
    """

    def __init__(self, account_number=7, sequence=0):
        self.account_number = account_number
        self.sequence = sequence
        self.account_calls = 0
        self.broadcasts: list[bytes] = []
        self.broadcast_responses: list[dict] = []
        self.included: dict[str, dict] = {}
        self.polls_until_included = 0
        self.tx_queries = 0
        self.simulated: list[bytes] = []

    async def get_account_info(self, address):
        self.account_calls += 1
        return AccountInfo(address, self.account_number, self.sequence)

    async def broadcast_tx(self, tx_bytes, mode="BROADCAST_MODE_SYNC"):
        self.broadcasts.append(tx_bytes)
        if self.broadcast_responses:
            return self.broadcast_responses.pop(0)
        return {"code": 0, "txhash": ""}

    async def get_tx(self, tx_hash):
        self.tx_queries += 1
        if tx_hash in self.included and self.tx_queries > self.polls_until_included:
            return self.included[tx_hash]
        return None

    async def simulate(self, tx_bytes):
        self.simulated.append(tx_bytes)
        return {"gas_info": {"gas_wanted": "0", "gas_used": "61234"}}


@pytest.fixture
def abandon_wallet():
    """Wallet for the all-'abandon' test phrase at m/44'/118'/0'/0/0."""
    return Wallet.from_phrase(ABANDON_PHRASE)


@pytest.fixture
def secret_key():
    """Deterministic key from a fixed secret."""
    return PrivateKey.from_secret(b"mySecret")


@pytest.fixture
def fee():
    return Fee((Coin(500, "uatom"),), 200_000)


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def tracker(fake_node):
    return SequenceTracker(fake_node.get_account_info)
