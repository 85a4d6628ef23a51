"""
Tests for NodeClient against an in-process aiohttp server.

Covers:
  - Account lookup, including vesting-account unwrapping and 404s
  - Broadcast request body (base64 TxRaw, sync mode)
  - Tx lookup returning None for unknown hashes
  - Retry with backoff on 5xx / transient gRPC codes, then NodeUnavailable
  - NodeUnavailable reaching a confirmation wait
  - Non-transient errors surfacing immediately
  - Chain status and block waiting
"""

from __future__ import annotations

import base64
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from starlane_core.broadcast import Broadcaster
from starlane_core.errors import NodeUnavailable, SequenceError, TxRejected, UnknownAccount
from starlane_core.network import AccountInfo, ChainState, ChainStatus, NodeClient
from starlane_core.sequence import SequenceTracker

from tests.conftest import ABANDON_ADDRESS

BASE_ACCOUNT = {
    "@type": "/cosmos.auth.v1beta1.BaseAccount",
    "address": ABANDON_ADDRESS,
    "pub_key": None,
    "account_number": "42",
    "sequence": "17",
}


# ─── Helpers ────────────────────────────────────────────────────────

class _FakeREST:
    """Minimal gRPC-gateway lookalike with scriptable failures."""

    def __init__(self):
        self.account = {"account": BASE_ACCOUNT}
        self.failures: list[tuple[int, dict]] = []
        self.requests: list[tuple[str, str]] = []
        self.posted: list[dict] = []
        self.txs: dict[str, dict] = {}
        self.syncing = False
        self.heights: list[int] = [100]

    def _maybe_fail(self, request):
        self.requests.append((request.method, request.path))
        if self.failures:
            status, body = self.failures.pop(0)
            return web.json_response(body, status=status)
        return None

    async def account_handler(self, request):
        failed = self._maybe_fail(request)
        if failed is not None:
            return failed
        if request.match_info["address"] != ABANDON_ADDRESS:
            return web.json_response(
                {"code": 5, "message": "account not found", "details": []}, status=404,
            )
        return web.json_response(self.account)

    async def broadcast_handler(self, request):
        failed = self._maybe_fail(request)
        if failed is not None:
            return failed
        body = await request.json()
        self.posted.append(body)
        return web.json_response(
            {"tx_response": {"code": 0, "txhash": "ABCD", "raw_log": "[]"}},
        )

    async def simulate_handler(self, request):
        self.posted.append(await request.json())
        return web.json_response({"gas_info": {"gas_wanted": "0", "gas_used": "5000"}})

    async def tx_handler(self, request):
        failed = self._maybe_fail(request)
        if failed is not None:
            return failed
        tx = self.txs.get(request.match_info["hash"])
        if tx is None:
            return web.json_response(
                {"code": 5, "message": "tx not found", "details": []}, status=404,
            )
        return web.json_response({"tx_response": tx})

    async def syncing_handler(self, request):
        return web.json_response({"syncing": self.syncing})

    async def latest_block_handler(self, request):
        failed = self._maybe_fail(request)
        if failed is not None:
            return failed
        height = self.heights.pop(0) if len(self.heights) > 1 else self.heights[0]
        return web.json_response({"sdk_block": {"header": {"height": str(height)}}})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/cosmos/auth/v1beta1/accounts/{address}", self.account_handler)
        app.router.add_post("/cosmos/tx/v1beta1/txs", self.broadcast_handler)
        app.router.add_post("/cosmos/tx/v1beta1/simulate", self.simulate_handler)
        app.router.add_get("/cosmos/tx/v1beta1/txs/{hash}", self.tx_handler)
        app.router.add_get("/cosmos/base/tendermint/v1beta1/syncing", self.syncing_handler)
        app.router.add_get(
            "/cosmos/base/tendermint/v1beta1/blocks/latest", self.latest_block_handler,
        )
        return app


@asynccontextmanager
async def _serve(rest: _FakeREST, **client_kwargs):
    server = TestServer(rest.app())
    await server.start_server()
    client_kwargs.setdefault("backoff", 0)
    client = NodeClient(str(server.make_url("")), **client_kwargs)
    try:
        yield client
    finally:
        await client.close()
        await server.close()


# ═══════════════════════════════════════════════════════════════════
#  Accounts
# ═══════════════════════════════════════════════════════════════════

class TestAccounts:
    @pytest.mark.asyncio
    async def test_base_account(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            info = await client.get_account_info(ABANDON_ADDRESS)
        assert info == AccountInfo(ABANDON_ADDRESS, 42, 17)

    @pytest.mark.asyncio
    async def test_vesting_account_unwrapped(self):
        rest = _FakeREST()
        rest.account = {"account": {
            "@type": "/cosmos.vesting.v1beta1.ContinuousVestingAccount",
            "base_vesting_account": {
                "base_account": dict(BASE_ACCOUNT, sequence="3"),
                "original_vesting": [],
            },
            "start_time": "0",
        }}
        async with _serve(rest) as client:
            info = await client.get_account_info(ABANDON_ADDRESS)
        assert (info.account_number, info.sequence) == (42, 3)

    @pytest.mark.asyncio
    async def test_unknown_account_type(self):
        rest = _FakeREST()
        rest.account = {"account": {"@type": "/custom.Account", "owner": "x"}}
        async with _serve(rest) as client:
            with pytest.raises(SequenceError):
                await client.get_account_info(ABANDON_ADDRESS)

    @pytest.mark.asyncio
    async def test_missing_account(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            with pytest.raises(UnknownAccount) as exc_info:
                await client.get_account_info("cosmos1nobody")
        assert exc_info.value.code == 5
        # not-found is an answer, not a transport failure
        assert len(rest.requests) == 1


# ═══════════════════════════════════════════════════════════════════
#  Transactions
# ═══════════════════════════════════════════════════════════════════

class TestTransactions:
    @pytest.mark.asyncio
    async def test_broadcast_body(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            response = await client.broadcast_tx(b"\x0a\x01\xff")
        assert response["txhash"] == "ABCD"
        assert rest.posted == [{
            "tx_bytes": base64.b64encode(b"\x0a\x01\xff").decode(),
            "mode": "BROADCAST_MODE_SYNC",
        }]

    @pytest.mark.asyncio
    async def test_get_tx(self):
        rest = _FakeREST()
        rest.txs["FEED"] = {"txhash": "FEED", "height": "55", "code": 0}
        async with _serve(rest) as client:
            assert (await client.get_tx("FEED"))["height"] == "55"
            assert await client.get_tx("BEEF") is None

    @pytest.mark.asyncio
    async def test_simulate(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            result = await client.simulate(b"\x01")
        assert result["gas_info"]["gas_used"] == "5000"
        assert "mode" not in rest.posted[0]


# ═══════════════════════════════════════════════════════════════════
#  Retries
# ═══════════════════════════════════════════════════════════════════

class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        rest = _FakeREST()
        rest.failures = [(503, {}), (502, {"message": "bad gateway"})]
        async with _serve(rest, max_retries=3) as client:
            info = await client.get_account_info(ABANDON_ADDRESS)
        assert info.sequence == 17
        assert len(rest.requests) == 3

    @pytest.mark.asyncio
    async def test_transient_grpc_code_retried(self):
        rest = _FakeREST()
        rest.failures = [(429, {"code": 8, "message": "resource exhausted"})]
        async with _serve(rest) as client:
            await client.broadcast_tx(b"\x01")
        assert len(rest.requests) == 2

    @pytest.mark.asyncio
    async def test_exhausted_raises_node_unavailable(self):
        rest = _FakeREST()
        rest.failures = [(503, {})] * 10
        async with _serve(rest, max_retries=2) as client:
            with pytest.raises(NodeUnavailable) as exc_info:
                await client.get_tx("FEED")
        assert len(rest.requests) == 3
        assert "503" in exc_info.value.log

    @pytest.mark.asyncio
    async def test_confirmation_surfaces_node_unavailable(self):
        rest = _FakeREST()
        async with _serve(rest, max_retries=2) as client:
            broadcaster = Broadcaster(client, SequenceTracker(client.get_account_info),
                                      "starlane-test-1", poll_interval=0)
            rest.failures = [(404, {"code": 5, "message": "tx not found"})] + [(503, {})] * 3
            with pytest.raises(NodeUnavailable) as exc_info:
                await broadcaster.await_confirmation("FEED", deadline=5.0)
        assert len(rest.requests) == 4
        assert "503" in exc_info.value.log

    @pytest.mark.asyncio
    async def test_application_error_not_retried(self):
        rest = _FakeREST()
        rest.failures = [(400, {"code": 3, "message": "invalid tx bytes"})]
        async with _serve(rest) as client:
            with pytest.raises(TxRejected) as exc_info:
                await client.broadcast_tx(b"\x01")
        assert exc_info.value.code == 3
        assert len(rest.requests) == 1

    @pytest.mark.asyncio
    async def test_5xx_with_application_code_not_retried(self):
        rest = _FakeREST()
        rest.failures = [(500, {"code": 2, "message": "unknown"})]
        async with _serve(rest) as client:
            with pytest.raises(TxRejected):
                await client.get_tx("FEED")
        assert len(rest.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        rest = _FakeREST()
        server = TestServer(rest.app())
        await server.start_server()
        url = str(server.make_url(""))
        await server.close()

        client = NodeClient(url, max_retries=1, backoff=0, timeout=2)
        try:
            with pytest.raises(NodeUnavailable):
                await client.get_account_info(ABANDON_ADDRESS)
        finally:
            await client.close()


# ═══════════════════════════════════════════════════════════════════
#  Chain status
# ═══════════════════════════════════════════════════════════════════

class TestChainStatus:
    @pytest.mark.asyncio
    async def test_moving(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            assert await client.get_chain_status() == ChainStatus(ChainState.MOVING, 100)

    @pytest.mark.asyncio
    async def test_syncing(self):
        rest = _FakeREST()
        rest.syncing = True
        async with _serve(rest) as client:
            assert (await client.get_chain_status()).state is ChainState.SYNCING

    @pytest.mark.asyncio
    async def test_waiting_to_start(self):
        rest = _FakeREST()
        rest.heights = [0]
        async with _serve(rest) as client:
            assert (await client.get_chain_status()).state is ChainState.WAITING_TO_START

    @pytest.mark.asyncio
    async def test_wait_for_next_block(self):
        rest = _FakeREST()
        rest.heights = [100, 100, 101]
        async with _serve(rest) as client:
            height = await client.wait_for_next_block(timeout=5, poll_interval=0.01)
        assert height == 101

    @pytest.mark.asyncio
    async def test_wait_for_next_block_times_out(self):
        rest = _FakeREST()
        async with _serve(rest) as client:
            with pytest.raises(NodeUnavailable):
                await client.wait_for_next_block(timeout=0.05, poll_interval=0.01)


class TestClientConfig:
    def test_from_config_section(self):
        from starlane_core.config import NodeConfig

        client = NodeClient.from_config(NodeConfig(url="http://node:1317/", max_retries=5))
        assert client.url == "http://node:1317"
        assert client.max_retries == 5
        assert repr(client) == "NodeClient(http://node:1317)"
