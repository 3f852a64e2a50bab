"""
Countdown derivation: turn a snapshot and wall-clock time into a display phase.

Rules:
- Finalized rounds show the winner, whatever the clock says
- ``end_time_unix - now <= 0`` on an open round is EXPIRED (awaiting reset)
- Everything else is ACTIVE with the remaining seconds

The wall clock is advisory only; a new round is recognised by its round id.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from rounds.models import Phase, PhaseKind, RoundSnapshot
from rounds.periodic import PeriodicTask

logger = logging.getLogger(__name__)

PhaseListener = Callable[[Optional[RoundSnapshot], Optional[Phase]], None]


def derive(snapshot: RoundSnapshot, now_unix: float) -> Phase:
    """
    Derive the display phase of ``snapshot`` at ``now_unix``.

    Pure: identical inputs always give identical output.

    Examples:
        derive(open round ending at T, T - 65) -> Phase.active(65)
        derive(open round ending at T, T + 5)  -> Phase.expired()
        derive(finalized round, any time)      -> Phase.finalized(winner)
    """
    if snapshot.finalized:
        return Phase.finalized(snapshot.winner)
    remaining = int(snapshot.end_time_unix - int(now_unix))
    if remaining <= 0:
        return Phase.expired()
    return Phase.active(remaining)


def format_phase(phase: Optional[Phase]) -> str:
    """Countdown text for a phase. Squares are shown 1-based."""
    if phase is None:
        return "Loading..."
    if phase.kind is PhaseKind.FINALIZED:
        if phase.winner is None:
            return "Round over"
        return f"Round over, winner #{phase.winner + 1}"
    if phase.kind is PhaseKind.EXPIRED:
        return "Time is up (awaiting reset)"
    minutes, seconds = divmod(phase.seconds_remaining, 60)
    return f"{minutes}m {seconds:02d}s"


class CountdownTicker:
    """
    Recompute the phase from the latest snapshot on a fast local tick.

    ``source`` returns whatever snapshot is current right now (usually
    ``lambda: poller.current``); nothing is decremented between ticks.
    """

    def __init__(
        self,
        source: Callable[[], Optional[RoundSnapshot]],
        interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._clock = clock
        self._listeners: List[PhaseListener] = []
        self._task = PeriodicTask(self.tick, interval, name="countdown")
        self.phase: Optional[Phase] = None

    def add_listener(self, listener: PhaseListener) -> None:
        self._listeners.append(listener)

    async def tick(self) -> Optional[Phase]:
        snapshot = self._source()
        self.phase = derive(snapshot, self._clock()) if snapshot is not None else None
        for listener in list(self._listeners):
            try:
                listener(snapshot, self.phase)
            except Exception as exc:
                logger.error(f"Countdown listener failed: {exc}", exc_info=True)
        return self.phase

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def __aenter__(self) -> CountdownTicker:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
