"""
Round state poller: keeps a local copy of the current round in step with the ledger.

Each poll reads the round id, the details for that id, then the round id
again. A snapshot is published only when both id reads agree, so the id and
the details always describe the same round. Failed or torn reads leave the
previous snapshot in place and are retried on the next tick.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Union

from rounds.models import RoundSnapshot
from rounds.periodic import PeriodicTask

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[RoundSnapshot], Union[None, Awaitable[None]]]


class RoundStatePoller:
    """Publish ledger round snapshots to subscribers at a fixed interval."""

    def __init__(
        self,
        ledger: Any,
        interval: float = 3.0,  # seconds
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            ledger: Object exposing ``read_current_round_id`` and ``read_round_details``
            interval: Seconds between polls
            clock: Wall-clock source stamped on each snapshot
        """
        self.ledger = ledger
        self.interval = interval
        self._clock = clock
        self._subscribers: List[SnapshotCallback] = []
        self._lock = asyncio.Lock()
        self._task = PeriodicTask(self.poll_once, interval, name="round-poller")
        self._refreshes: set[asyncio.Task] = set()

        self.current: Optional[RoundSnapshot] = None
        self.fetch_error = False
        self.last_error: Optional[BaseException] = None
        self.poll_count = 0
        self.published_count = 0

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register ``callback`` for every published snapshot.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def poll_once(self) -> Optional[RoundSnapshot]:
        """
        Run one poll. Returns the published snapshot, or None if nothing was published.

        Polls are serialized, so subscribers see snapshots in attempt order.
        """
        async with self._lock:
            self.poll_count += 1
            try:
                round_id = await self.ledger.read_current_round_id()
                details = await self.ledger.read_round_details(round_id)
                confirmed_id = await self.ledger.read_current_round_id()
                if confirmed_id != round_id:
                    logger.debug(
                        f"Discarding torn read: details for round {round_id}, ledger now on {confirmed_id}"
                    )
                    return None
                snapshot = RoundSnapshot.from_details(round_id, details, fetched_at=self._clock())
            except Exception as e:
                if not self.fetch_error:
                    logger.warning(f"Round poll failed, keeping last snapshot: {e}")
                else:
                    logger.debug(f"Round poll still failing: {e}")
                self.fetch_error = True
                self.last_error = e
                return None

            if self.fetch_error:
                logger.info("Round poll recovered")
            self.fetch_error = False
            self.last_error = None

            if self.current is not None and snapshot.round_id < self.current.round_id:
                logger.debug(
                    f"Discarding lagging read: round {snapshot.round_id} < current {self.current.round_id}"
                )
                return None
            if self.current is not None and snapshot.round_id != self.current.round_id:
                logger.info(f"Round turned over: {self.current.round_id} → {snapshot.round_id}")

            self.current = snapshot
            self.published_count += 1
            await self._publish(snapshot)
            return snapshot

    async def _publish(self, snapshot: RoundSnapshot) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Snapshot subscriber failed: {e}", exc_info=True)

    def request_refresh(self, delay: float = 2.0) -> None:
        """Schedule one extra poll after ``delay`` seconds. Best effort only."""

        async def _refresh() -> None:
            await asyncio.sleep(delay)
            await self.poll_once()

        task = asyncio.get_running_loop().create_task(_refresh(), name="round-poller-refresh")
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
        refreshes = list(self._refreshes)
        for task in refreshes:
            task.cancel()
        if refreshes:
            await asyncio.gather(*refreshes, return_exceptions=True)

    async def __aenter__(self) -> RoundStatePoller:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
