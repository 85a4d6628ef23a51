"""
Transaction submission and confirmation for Starlane.

:class:`Broadcaster` ties the pieces together for one chain::

    reserve sequence -> build + sign -> submit -> (await inclusion)

Submission outcomes are plain values (:class:`Pending`, :class:`Rejected`,
:class:`Included`, :class:`TimedOut`); exceptions are kept for conditions
the caller cannot act on from the result alone (node unreachable, mempool
still full after retries, a second stale sequence).

SDK error codes that are classified (codespace ``sdk``):

    4   signature verification failed   -> INVALID_SIGNATURE
    13  insufficient fee                -> INSUFFICIENT_FEE
    19  already in mempool              -> treated as Pending
    20  mempool full                    -> retried, then MempoolFull
    32  account sequence mismatch       -> resync once, re-sign, retry
    2, 12, 21  undecodable / too large  -> MALFORMED
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

from starlane_core.coin import Coin, Fee
from starlane_core.errors import (
    BroadcastError,
    ConfirmationTimeout,
    InsufficientFee,
    InvalidSignature,
    MempoolFull,
    NodeUnavailable,
    StaleSequence,
    StarlaneError,
    TxRejected,
)
from starlane_core.msg import Msg
from starlane_core.network import NodeClient
from starlane_core.sequence import SequenceReservation, SequenceTracker
from starlane_core.transaction import SignedTx
from starlane_core.wallet import Wallet

logger = logging.getLogger("starlane_broadcast")

SDK_CODESPACE = "sdk"
CODE_INVALID_SIGNATURE = 4
CODE_INSUFFICIENT_FEE = 13
CODE_TX_IN_MEMPOOL = 19
CODE_MEMPOOL_FULL = 20
CODE_WRONG_SEQUENCE = 32
MALFORMED_CODES = frozenset({2, 12, 21})

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_CONFIRM_TIMEOUT = 60.0
DEFAULT_MEMPOOL_RETRIES = 3
DEFAULT_GAS_MULTIPLIER = 2.0
# gas limit used for simulation only
SIMULATION_GAS_LIMIT = (1 << 63) - 1


class RejectKind(Enum):
    INVALID_SIGNATURE = "invalid_signature"
    INSUFFICIENT_FEE = "insufficient_fee"
    MEMPOOL_FULL = "mempool_full"
    STALE_SEQUENCE = "stale_sequence"
    MALFORMED = "malformed"
    OTHER = "other"


_KIND_ERRORS = {
    RejectKind.INVALID_SIGNATURE: InvalidSignature,
    RejectKind.INSUFFICIENT_FEE: InsufficientFee,
    RejectKind.MEMPOOL_FULL: MempoolFull,
    RejectKind.STALE_SEQUENCE: StaleSequence,
}


# ===================================================================
#  Submission results
# ===================================================================

@dataclass(frozen=True)
class Pending:
    tx_hash: str


@dataclass(frozen=True)
class Rejected:
    kind: RejectKind
    code: int
    codespace: str
    log: str
    tx_hash: str = ""

    def to_error(self) -> StarlaneError:
        """The exception matching this rejection, for callers that raise."""
        exc_type = _KIND_ERRORS.get(self.kind, TxRejected)
        return exc_type(
            f"transaction rejected: {self.kind.value}",
            code=self.code, codespace=self.codespace, log=self.log,
        )


@dataclass(frozen=True)
class Included:
    tx_hash: str
    height: int
    events: Tuple[dict, ...] = field(default_factory=tuple)
    code: int = 0
    codespace: str = ""
    log: str = ""
    gas_wanted: int = 0
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        """False when the transaction made it into a block but failed."""
        return self.code == 0


@dataclass(frozen=True)
class TimedOut:
    tx_hash: str
    waited: float


SubmissionResult = Union[Pending, Rejected, Included, TimedOut]


def classify_code(code: int, codespace: str) -> RejectKind:
    if codespace != SDK_CODESPACE:
        return RejectKind.OTHER
    if code == CODE_INVALID_SIGNATURE:
        return RejectKind.INVALID_SIGNATURE
    if code == CODE_INSUFFICIENT_FEE:
        return RejectKind.INSUFFICIENT_FEE
    if code == CODE_MEMPOOL_FULL:
        return RejectKind.MEMPOOL_FULL
    if code == CODE_WRONG_SEQUENCE:
        return RejectKind.STALE_SEQUENCE
    if code in MALFORMED_CODES:
        return RejectKind.MALFORMED
    return RejectKind.OTHER


def classify_response(tx_response: dict, tx_hash: str) -> Union[Pending, Rejected]:
    """Turn a broadcast ``tx_response`` into Pending or Rejected."""
    code = int(tx_response.get("code", 0) or 0)
    codespace = tx_response.get("codespace", "") or ""
    tx_hash = tx_response.get("txhash") or tx_hash
    if code == 0 or (codespace == SDK_CODESPACE and code == CODE_TX_IN_MEMPOOL):
        return Pending(tx_hash)
    return Rejected(
        kind=classify_code(code, codespace),
        code=code,
        codespace=codespace,
        log=tx_response.get("raw_log", "") or "",
        tx_hash=tx_hash,
    )


def _included(tx_hash: str, tx_response: dict) -> Included:
    return Included(
        tx_hash=tx_response.get("txhash") or tx_hash,
        height=int(tx_response.get("height", 0)),
        events=tuple(tx_response.get("events") or ()),
        code=int(tx_response.get("code", 0) or 0),
        codespace=tx_response.get("codespace", "") or "",
        log=tx_response.get("raw_log", "") or "",
        gas_wanted=int(tx_response.get("gas_wanted", 0) or 0),
        gas_used=int(tx_response.get("gas_used", 0) or 0),
    )


# ===================================================================
#  Broadcaster
# ===================================================================

class Broadcaster:
    """Signs, submits and confirms transactions on one chain."""

    def __init__(
        self,
        node: NodeClient,
        sequences: SequenceTracker,
        chain_id: str,
        *,
        mempool_retries: int = DEFAULT_MEMPOOL_RETRIES,
        backoff: float = 0.5,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    ):
        self.node = node
        self.sequences = sequences
        self.chain_id = chain_id
        self.mempool_retries = mempool_retries
        self.backoff = backoff
        self.poll_interval = poll_interval
        self.confirm_timeout = confirm_timeout

    @classmethod
    def from_config(cls, config: Any, node: Optional[NodeClient] = None) -> Broadcaster:
        node = node or NodeClient.from_config(config)
        return cls(
            node,
            SequenceTracker(node.get_account_info),
            config.chain.chain_id,
            mempool_retries=config.broadcast.mempool_retries,
            backoff=config.node.backoff,
            poll_interval=config.broadcast.poll_interval,
            confirm_timeout=config.broadcast.confirm_timeout,
        )

    # ── Submission ───────────────────────────────────────────────────

    async def submit(self, signed_tx: SignedTx) -> Union[Pending, Rejected]:
        """Broadcast once (retrying only while the mempool is full)."""
        tx_hash = signed_tx.tx_hash
        tx_bytes = signed_tx.to_bytes()
        for attempt in range(self.mempool_retries + 1):
            result = classify_response(await self.node.broadcast_tx(tx_bytes), tx_hash)
            if not (isinstance(result, Rejected) and result.kind is RejectKind.MEMPOOL_FULL):
                if isinstance(result, Rejected):
                    logger.info(
                        f"Tx {tx_hash} rejected: {result.kind.value} "
                        f"(codespace={result.codespace} code={result.code})"
                    )
                else:
                    logger.debug(f"Tx {tx_hash} accepted into mempool")
                return result
            if attempt < self.mempool_retries:
                delay = self.backoff * 2 ** attempt
                logger.warning(f"Mempool full, retrying tx {tx_hash} in {delay:.2f}s")
                await asyncio.sleep(delay)
        raise result.to_error()

    async def _sign_and_submit(
        self, wallet: Wallet, reservation: SequenceReservation, msgs: Tuple[Msg, ...],
        fee: Fee, memo: str, timeout_height: int,
    ) -> Union[Pending, Rejected]:
        unsigned = wallet.build_tx(
            msgs, fee, reservation.sequence, reservation.account_number,
            memo=memo, timeout_height=timeout_height,
        )
        signed = wallet.sign_tx(unsigned, self.chain_id, reservation.account_number)
        logger.debug(
            f"Submitting {len(msgs)} msg(s) from {wallet.address} "
            f"with sequence {reservation.sequence}"
        )
        return await self.submit(signed)

    async def _attempt(
        self, wallet: Wallet, reservation: SequenceReservation, msgs: Tuple[Msg, ...],
        fee: Fee, memo: str, timeout_height: int,
    ) -> Union[Pending, Rejected]:
        try:
            return await self._sign_and_submit(
                wallet, reservation, msgs, fee, memo, timeout_height,
            )
        except NodeUnavailable:
            # the node may or may not have the transaction
            self.sequences.invalidate(wallet.address, self.chain_id)
            raise
        except StarlaneError:
            self.sequences.release(reservation)
            raise

    async def send(
        self,
        wallet: Wallet,
        msgs: Iterable[Msg],
        fee: Fee,
        memo: str = "",
        timeout_height: int = 0,
    ) -> Union[Pending, Rejected]:
        """
        Reserve a sequence, sign and submit.

        A stale-sequence rejection triggers one resync and one re-signed
        retry; a second stale rejection raises :class:`StaleSequence`.
        """
        msgs = tuple(msgs)
        reservation = await self.sequences.next_sequence(wallet.address, self.chain_id)
        result = await self._attempt(wallet, reservation, msgs, fee, memo, timeout_height)

        if isinstance(result, Rejected) and result.kind is RejectKind.STALE_SEQUENCE:
            logger.warning(
                f"Stale sequence {reservation.sequence} for {wallet.address}: {result.log}"
            )
            await self.sequences.resync(wallet.address, self.chain_id)
            reservation = await self.sequences.next_sequence(wallet.address, self.chain_id)
            result = await self._attempt(wallet, reservation, msgs, fee, memo, timeout_height)
            if isinstance(result, Rejected) and result.kind is RejectKind.STALE_SEQUENCE:
                self.sequences.invalidate(wallet.address, self.chain_id)
                raise result.to_error()

        if isinstance(result, Rejected):
            self.sequences.release(reservation)
        return result

    # ── Confirmation ─────────────────────────────────────────────────

    async def await_confirmation(
        self,
        tx_hash: str,
        poll_interval: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> Union[Included, TimedOut]:
        """
        Poll until the transaction is in a block or ``deadline`` seconds pass.

        A timeout only abandons the local wait; the transaction may still be
        included later.
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        limit = self.confirm_timeout if deadline is None else deadline
        loop = asyncio.get_running_loop()
        started = loop.time()
        end = started + limit
        while True:
            remaining = max(end - loop.time(), 0)
            try:
                tx_response = await asyncio.wait_for(self.node.get_tx(tx_hash), remaining)
            except asyncio.TimeoutError:
                return self._timed_out(tx_hash, loop.time() - started)
            if tx_response is not None and int(tx_response.get("height", 0) or 0) > 0:
                result = _included(tx_hash, tx_response)
                logger.info(f"Tx {tx_hash} included at height {result.height}")
                return result
            remaining = end - loop.time()
            if remaining <= 0:
                return self._timed_out(tx_hash, loop.time() - started)
            await asyncio.sleep(min(interval, remaining))

    @staticmethod
    def _timed_out(tx_hash: str, waited: float) -> TimedOut:
        logger.info(f"Stopped waiting for tx {tx_hash} after {waited:.1f}s")
        return TimedOut(tx_hash, waited)

    async def confirm_or_raise(
        self, tx_hash: str, poll_interval: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> Included:
        result = await self.await_confirmation(tx_hash, poll_interval, deadline)
        if isinstance(result, TimedOut):
            raise ConfirmationTimeout(result.tx_hash, result.waited)
        return result

    async def send_and_confirm(
        self,
        wallet: Wallet,
        msgs: Iterable[Msg],
        fee: Fee,
        memo: str = "",
        timeout_height: int = 0,
        deadline: Optional[float] = None,
    ) -> SubmissionResult:
        result = await self.send(wallet, msgs, fee, memo, timeout_height)
        if isinstance(result, Pending):
            return await self.await_confirmation(result.tx_hash, deadline=deadline)
        return result

    # ── Fees ─────────────────────────────────────────────────────────

    async def estimate_fee(
        self,
        wallet: Wallet,
        msgs: Iterable[Msg],
        fee_coins: Iterable[Coin] = (),
        gas_multiplier: float = DEFAULT_GAS_MULTIPLIER,
    ) -> Fee:
        """Simulate the transaction and size the gas limit from the result."""
        msgs = tuple(msgs)
        fee_coins = tuple(fee_coins)
        info = await self.node.get_account_info(wallet.address)
        unsigned = wallet.build_tx(
            msgs, Fee(fee_coins, SIMULATION_GAS_LIMIT), info.sequence, info.account_number,
        )
        signed = wallet.sign_tx(unsigned, self.chain_id, info.account_number)
        simulation = await self.node.simulate(signed.to_bytes())
        try:
            gas_used = int(simulation["gas_info"]["gas_used"])
        except (KeyError, TypeError, ValueError) as exc:
            raise BroadcastError(f"simulation returned no gas estimate: {simulation!r}") from exc
        logger.debug(f"Simulated {len(msgs)} msg(s) for {wallet.address}: gas_used={gas_used}")
        return Fee(fee_coins, int(gas_used * gas_multiplier))
