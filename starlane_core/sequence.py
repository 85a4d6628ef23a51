"""
Per-account sequence bookkeeping.

Every transaction carries the signer's account sequence, and the node
rejects any transaction whose sequence is not exactly the next one.
:class:`SequenceTracker` hands out sequence numbers optimistically so a
client can submit several transactions back to back without asking the
node in between.

Entry lifecycle, per (address, chain_id)::

    UNKNOWN --fetch--> SYNCED(n) --reserve--> SYNCED(n+1)
                          |                        |
                          +---- release/invalidate-+--> STALE --fetch--> SYNCED(m)

Each entry has its own lock, held only while its numbers are read or
written.  The node fetch happens outside the lock; concurrent callers
that find an entry unsynced on the same event loop wait on one fetch.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, Tuple

if TYPE_CHECKING:
    from starlane_core.network import AccountInfo

logger = logging.getLogger("starlane_sequence")

FetchAccount = Callable[[str], Awaitable["AccountInfo"]]


class SequenceState(Enum):
    UNKNOWN = "unknown"
    SYNCED = "synced"
    STALE = "stale"


@dataclass(frozen=True)
class SequenceReservation:
    address: str
    chain_id: str
    account_number: int
    sequence: int


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    state: SequenceState = SequenceState.UNKNOWN
    account_number: int = 0
    next_sequence: int = 0
    # bumped whenever the entry goes stale; older fetches are not applied
    epoch: int = 0
    # in-flight fetch per event loop, with the epoch it was started in
    fetches: Dict[asyncio.AbstractEventLoop, Tuple[int, asyncio.Task]] = field(
        default_factory=dict,
    )

    def mark_stale(self) -> None:
        self.state = SequenceState.STALE
        self.epoch += 1


class SequenceTracker:
    """
    Table of account sequence entries owned by one client.

    ``fetch_account`` is an async callable returning the node's
    :class:`~starlane_core.network.AccountInfo` for an address, normally
    ``NodeClient.get_account_info``.

    A tracker may be shared by threads each running their own event loop.
    Callers on the same loop share one fetch; a fetch from another loop
    that finishes after the entry is already synced is dropped, so it
    never rewinds numbers handed out in the meantime.
    """

    def __init__(self, fetch_account: FetchAccount):
        self._fetch_account = fetch_account
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._table_lock = threading.Lock()

    def _entry(self, address: str, chain_id: str) -> _Entry:
        with self._table_lock:
            return self._entries.setdefault((address, chain_id), _Entry())

    # ── Node sync ────────────────────────────────────────────────────

    def _start_fetch(self, entry: _Entry, address: str, chain_id: str) -> asyncio.Task:
        # caller holds entry.lock
        loop = asyncio.get_running_loop()
        current = entry.fetches.get(loop)
        if current is not None and current[0] == entry.epoch:
            return current[1]
        task = loop.create_task(self._fetch(entry, address, chain_id, entry.epoch))
        entry.fetches[loop] = (entry.epoch, task)
        return task

    async def _fetch(self, entry: _Entry, address: str, chain_id: str, epoch: int) -> int:
        loop = asyncio.get_running_loop()
        try:
            info = await self._fetch_account(address)
        finally:
            with entry.lock:
                current = entry.fetches.get(loop)
                if current is not None and current[0] == epoch:
                    del entry.fetches[loop]
        with entry.lock:
            applied = entry.epoch == epoch and entry.state is not SequenceState.SYNCED
            if applied:
                entry.account_number = info.account_number
                entry.next_sequence = info.sequence
                entry.state = SequenceState.SYNCED
        if applied:
            logger.debug(
                f"Synced {address} on {chain_id}: account={info.account_number} "
                f"sequence={info.sequence}"
            )
        else:
            logger.debug(f"Dropped superseded sequence fetch for {address} on {chain_id}")
        return info.sequence

    # ── Public API ───────────────────────────────────────────────────

    async def next_sequence(self, address: str, chain_id: str) -> SequenceReservation:
        """Reserve the next sequence number for ``address`` on ``chain_id``."""
        entry = self._entry(address, chain_id)
        while True:
            with entry.lock:
                if entry.state is SequenceState.SYNCED:
                    reservation = SequenceReservation(
                        address, chain_id, entry.account_number, entry.next_sequence,
                    )
                    entry.next_sequence += 1
                    return reservation
                pending = self._start_fetch(entry, address, chain_id)
            await asyncio.shield(pending)

    async def resync(self, address: str, chain_id: str) -> int:
        """Overwrite local state from the node; returns the node's sequence."""
        entry = self._entry(address, chain_id)
        with entry.lock:
            entry.mark_stale()
            pending = self._start_fetch(entry, address, chain_id)
        logger.info(f"Resyncing sequence for {address} on {chain_id}")
        return await asyncio.shield(pending)

    def release(self, reservation: SequenceReservation) -> None:
        """
        Hand back a reservation whose transaction never reached the mempool.

        The counter rolls back when it is the most recent reservation;
        otherwise a later transaction already used the following number, so
        the entry is marked stale and the next reservation resyncs first.
        """
        entry = self._entry(reservation.address, reservation.chain_id)
        with entry.lock:
            if entry.state is not SequenceState.SYNCED:
                return
            if (entry.next_sequence == reservation.sequence + 1
                    and entry.account_number == reservation.account_number):
                entry.next_sequence = reservation.sequence
            else:
                entry.mark_stale()
                logger.debug(
                    f"Released out-of-order sequence {reservation.sequence} for "
                    f"{reservation.address}; marking stale"
                )

    def invalidate(self, address: str, chain_id: str) -> None:
        """Force the next reservation to resync (outcome of a submit unknown)."""
        entry = self._entry(address, chain_id)
        with entry.lock:
            if entry.state is SequenceState.SYNCED:
                entry.mark_stale()

    def state(self, address: str, chain_id: str) -> SequenceState:
        entry = self._entry(address, chain_id)
        with entry.lock:
            return entry.state

    def peek(self, address: str, chain_id: str) -> Optional[int]:
        """The number the next reservation would get, if synced."""
        entry = self._entry(address, chain_id)
        with entry.lock:
            if entry.state is SequenceState.SYNCED:
                return entry.next_sequence
            return None
