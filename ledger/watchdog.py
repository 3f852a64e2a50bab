"""
Watchdog that advances expired rounds.

Implements a small state machine driven by wall-clock ticks:
IDLE -> CHECKING -> (RESETTING) -> IDLE. The ledger is the only arbiter:
several watchdogs may run against the same contract, and the losers of a
race simply see their reset rejected by the contract's guard.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ledger.errors import LedgerGuardRejection
from rounds.models import RoundSnapshot
from rounds.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class WatchdogState(Enum):
    """States of the watchdog."""

    IDLE = "idle"  # Waiting for the next tick
    CHECKING = "checking"  # Reading the current round
    RESETTING = "resetting"  # Submitting the round advance


class TickOutcome(Enum):
    """What a single tick ended with."""

    NOT_DUE = "not_due"
    FINALIZED = "finalized"
    RESET_SUBMITTED = "reset_submitted"
    RESET_REJECTED = "reset_rejected"
    RESET_FAILED = "reset_failed"
    READ_FAILED = "read_failed"
    SKIPPED = "skipped"


@dataclass
class WatchdogCycle:
    """Process-local memory of the last checks and attempts. Never a source of truth."""

    last_snapshot: Optional[RoundSnapshot] = None
    last_checked_at: Optional[float] = None
    last_attempt_round_id: Optional[int] = None
    last_attempt_at: Optional[float] = None
    last_tx_handle: Optional[str] = None
    last_outcome: Optional[TickOutcome] = None
    last_error: Optional[str] = None
    transitions: List[WatchdogState] = field(default_factory=list)
    tick_count: int = 0
    outcome_counts: Dict[TickOutcome, int] = field(default_factory=dict)

    def record(self, outcome: TickOutcome) -> None:
        self.last_outcome = outcome
        self.outcome_counts[outcome] = self.outcome_counts.get(outcome, 0) + 1


class WatchdogResetter:
    """Periodically advance the round once its deadline has passed."""

    def __init__(
        self,
        ledger: Any,
        interval: float = 60.0,  # seconds
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the watchdog.

        Args:
            ledger: Object exposing round reads and ``submit_advance_round``
            interval: Seconds between ticks
            clock: Wall-clock source compared against round deadlines
        """
        self.ledger = ledger
        self.interval = interval
        self._clock = clock
        self.state = WatchdogState.IDLE
        self.cycle = WatchdogCycle()
        self._task = PeriodicTask(self.tick, interval, name="watchdog")

    def _transition(self, new_state: WatchdogState) -> None:
        old_state = self.state
        self.state = new_state
        self.cycle.transitions.append(new_state)
        logger.debug(f"→ {old_state.value} → {new_state.value}")

    async def _read_snapshot(self) -> RoundSnapshot:
        round_id = await self.ledger.read_current_round_id()
        details = await self.ledger.read_round_details(round_id)
        return RoundSnapshot.from_details(round_id, details, fetched_at=self._clock())

    async def tick(self) -> TickOutcome:
        """
        Run one check and, if the round is due, one reset attempt.

        Returns:
            The TickOutcome of this tick (also kept in ``cycle``)
        """
        self.cycle.tick_count += 1
        self.cycle.transitions = [self.state]
        try:
            outcome = await self._check_and_reset()
        finally:
            self._transition(WatchdogState.IDLE)
        self.cycle.record(outcome)
        return outcome

    async def _check_and_reset(self) -> TickOutcome:
        self._transition(WatchdogState.CHECKING)
        try:
            snapshot = await self._read_snapshot()
        except Exception as e:
            logger.warning(f"Watchdog could not read the round: {e}")
            self.cycle.last_error = str(e)
            return TickOutcome.READ_FAILED

        now = self._clock()
        self.cycle.last_snapshot = snapshot
        self.cycle.last_checked_at = now

        if snapshot.finalized:
            logger.info(f"Round {snapshot.round_id} already finalized")
            return TickOutcome.FINALIZED

        if now < snapshot.end_time_unix:
            remaining = math.ceil(snapshot.end_time_unix - now)
            logger.info(f"⏳ Round {snapshot.round_id}: {remaining}s left")
            return TickOutcome.NOT_DUE

        if (
            self.cycle.last_attempt_round_id == snapshot.round_id
            and self.cycle.last_attempt_at is not None
            and now - self.cycle.last_attempt_at < self.interval
        ):
            logger.debug(f"Reset for round {snapshot.round_id} already sent this interval")
            return TickOutcome.SKIPPED

        self._transition(WatchdogState.RESETTING)
        logger.info(f"🔄 Round {snapshot.round_id} expired, sending reset")
        try:
            tx_handle = await self.ledger.submit_advance_round()
        except LedgerGuardRejection as e:
            # Usually a peer advanced the round first
            logger.info(f"Reset for round {snapshot.round_id} not needed: {e}")
            self.cycle.last_error = str(e)
            return TickOutcome.RESET_REJECTED
        except Exception as e:
            logger.error(f"Reset for round {snapshot.round_id} failed: {e}", exc_info=True)
            self.cycle.last_error = str(e)
            return TickOutcome.RESET_FAILED

        self.cycle.last_attempt_round_id = snapshot.round_id
        self.cycle.last_attempt_at = now
        self.cycle.last_tx_handle = tx_handle
        self.cycle.last_error = None
        logger.info(f"✓ Reset sent for round {snapshot.round_id}: {tx_handle}")
        return TickOutcome.RESET_SUBMITTED

    def status(self) -> dict:
        """Get status of the watchdog."""
        cycle = self.cycle
        snapshot = cycle.last_snapshot
        return {
            "state": self.state.value,
            "interval": self.interval,
            "running": self.running,
            "tick_count": cycle.tick_count,
            "last_outcome": cycle.last_outcome.value if cycle.last_outcome else None,
            "last_transitions": [s.value for s in cycle.transitions],
            "last_checked_at": cycle.last_checked_at,
            "last_round_id": snapshot.round_id if snapshot else None,
            "last_end_time_unix": snapshot.end_time_unix if snapshot else None,
            "last_attempt_round_id": cycle.last_attempt_round_id,
            "last_attempt_at": cycle.last_attempt_at,
            "last_tx_handle": cycle.last_tx_handle,
            "last_error": cycle.last_error,
            "outcome_counts": {k.value: v for k, v in cycle.outcome_counts.items()},
        }

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        logger.info(f"Watchdog started (every {self.interval:.0f}s)")
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def __aenter__(self) -> WatchdogResetter:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
