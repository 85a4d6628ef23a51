"""
Node client for Starlane.

Talks to a Cosmos SDK node through its REST (gRPC-gateway) endpoints
using one shared ``aiohttp.ClientSession`` per client.  Many requests may
be in flight on the same client at once.

  - account lookup (account number + sequence)
  - transaction broadcast, lookup by hash, and simulation
  - latest block / sync status, chain liveness

Transport failures (connection errors, timeouts, HTTP 5xx carrying no
application error) are retried with exponential backoff up to
``max_retries`` times and then surface as :class:`NodeUnavailable`.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import aiohttp

from starlane_core.errors import (
    NodeUnavailable,
    SequenceError,
    TxRejected,
    UnknownAccount,
)

logger = logging.getLogger("starlane_network")

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF = 0.5

BROADCAST_MODE_SYNC = "BROADCAST_MODE_SYNC"

# gRPC status codes the gateway forwards in error bodies
GRPC_DEADLINE_EXCEEDED = 4
GRPC_NOT_FOUND = 5
GRPC_RESOURCE_EXHAUSTED = 8
GRPC_UNAVAILABLE = 14
_TRANSIENT_GRPC_CODES = {GRPC_DEADLINE_EXCEEDED, GRPC_RESOURCE_EXHAUSTED, GRPC_UNAVAILABLE}


@dataclass(frozen=True)
class AccountInfo:
    address: str
    account_number: int
    sequence: int


class ChainState(Enum):
    MOVING = "moving"
    SYNCING = "syncing"
    WAITING_TO_START = "waiting_to_start"


@dataclass(frozen=True)
class ChainStatus:
    state: ChainState
    height: Optional[int] = None


@dataclass(frozen=True)
class _Reply:
    status: int
    body: dict

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def grpc_code(self) -> Optional[int]:
        code = self.body.get("code")
        return code if isinstance(code, int) else None

    @property
    def not_found(self) -> bool:
        return self.status == 404 or self.grpc_code == GRPC_NOT_FOUND

    @property
    def message(self) -> str:
        return str(self.body.get("message", "")) or f"HTTP {self.status}"

    @property
    def transient(self) -> bool:
        if self.ok or self.not_found:
            return False
        if self.grpc_code in _TRANSIENT_GRPC_CODES:
            return True
        return self.status >= 500 and self.grpc_code is None


def _unwrap_account(account: dict) -> dict:
    """Dig the BaseAccount out of vesting / module account wrappers."""
    while "account_number" not in account:
        if "base_vesting_account" in account:
            account = account["base_vesting_account"]
        elif "base_account" in account:
            account = account["base_account"]
        else:
            raise SequenceError(
                f"unrecognised account type {account.get('@type', '?')!r}"
            )
    return account


class NodeClient:
    """Async REST client for one node."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: Any) -> NodeClient:
        """Build from a ``StarlaneConfig`` (or its ``node`` section)."""
        node = getattr(config, "node", config)
        return cls(
            node.url,
            timeout=node.timeout,
            max_retries=node.max_retries,
            backoff=node.backoff,
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> NodeClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Transport ────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, json_body: Optional[dict] = None) -> _Reply:
        """One logical request, with bounded retries on transient failures."""
        session = self._get_session()
        last_error = ""
        for attempt in range(self.max_retries + 1):
            if attempt:
                delay = self.backoff * 2 ** (attempt - 1)
                logger.debug(f"Retrying {method} {path} in {delay:.2f}s ({last_error})")
                await asyncio.sleep(delay)
            try:
                async with session.request(method, self.url + path, json=json_body) as resp:
                    try:
                        body = await resp.json(content_type=None)
                    except ValueError:
                        body = None
                    reply = _Reply(resp.status, body if isinstance(body, dict) else {})
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                continue
            if reply.transient:
                last_error = reply.message
                continue
            return reply
        logger.warning(
            f"{method} {path} failed after {self.max_retries + 1} attempts: {last_error}"
        )
        raise NodeUnavailable(
            f"{self.url} unreachable after {self.max_retries + 1} attempts",
            log=last_error,
        )

    @staticmethod
    def _raise_for(reply: _Reply, what: str) -> None:
        if not reply.ok:
            raise TxRejected(
                f"{what} failed: {reply.message}",
                code=reply.grpc_code,
                codespace="grpc",
                log=reply.message,
            )

    # ── Accounts ─────────────────────────────────────────────────────

    async def get_account_info(self, address: str) -> AccountInfo:
        reply = await self._request("GET", f"/cosmos/auth/v1beta1/accounts/{address}")
        if reply.not_found:
            raise UnknownAccount(
                f"account {address} not found", code=GRPC_NOT_FOUND,
                codespace="grpc", log=reply.message,
            )
        self._raise_for(reply, "account query")
        base = _unwrap_account(reply.body.get("account", {}))
        return AccountInfo(
            address=base.get("address", address),
            account_number=int(base.get("account_number", 0)),
            sequence=int(base.get("sequence", 0)),
        )

    # ── Transactions ─────────────────────────────────────────────────

    async def broadcast_tx(self, tx_bytes: bytes, mode: str = BROADCAST_MODE_SYNC) -> dict:
        """Submit TxRaw bytes; returns the node's ``tx_response``."""
        reply = await self._request(
            "POST",
            "/cosmos/tx/v1beta1/txs",
            {"tx_bytes": base64.b64encode(tx_bytes).decode("ascii"), "mode": mode},
        )
        self._raise_for(reply, "broadcast")
        return reply.body.get("tx_response", {})

    async def get_tx(self, tx_hash: str) -> Optional[dict]:
        """The ``tx_response`` for an included transaction, or None."""
        reply = await self._request("GET", f"/cosmos/tx/v1beta1/txs/{tx_hash}")
        if reply.not_found:
            return None
        self._raise_for(reply, "tx query")
        return reply.body.get("tx_response")

    async def simulate(self, tx_bytes: bytes) -> dict:
        reply = await self._request(
            "POST",
            "/cosmos/tx/v1beta1/simulate",
            {"tx_bytes": base64.b64encode(tx_bytes).decode("ascii")},
        )
        self._raise_for(reply, "simulation")
        return reply.body

    # ── Chain status ─────────────────────────────────────────────────

    async def get_latest_block(self) -> dict:
        reply = await self._request("GET", "/cosmos/base/tendermint/v1beta1/blocks/latest")
        self._raise_for(reply, "latest block query")
        return reply.body

    async def get_syncing(self) -> bool:
        reply = await self._request("GET", "/cosmos/base/tendermint/v1beta1/syncing")
        self._raise_for(reply, "sync status query")
        return bool(reply.body.get("syncing", False))

    async def get_chain_status(self) -> ChainStatus:
        if await self.get_syncing():
            return ChainStatus(ChainState.SYNCING)
        block = await self.get_latest_block()
        # newer nodes report sdk_block, older ones only block
        header = (block.get("sdk_block") or block.get("block") or {}).get("header") or {}
        height = int(header.get("height", 0) or 0)
        if height <= 0:
            return ChainStatus(ChainState.WAITING_TO_START)
        return ChainStatus(ChainState.MOVING, height)

    async def wait_for_next_block(self, timeout: float, poll_interval: float = 1.0) -> int:
        """Block until the height advances; returns the new height."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        start = await self.get_chain_status()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise NodeUnavailable(f"no new block within {timeout}s")
            await asyncio.sleep(min(poll_interval, remaining))
            status = await self.get_chain_status()
            if status.state is ChainState.MOVING and (
                start.height is None or status.height > start.height
            ):
                return status.height

    def __repr__(self) -> str:
        return f"NodeClient({self.url})"
