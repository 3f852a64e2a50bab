"""
Shared round dataclasses for BaseMiner.

These models intentionally remain lightweight so that the viewer, the staker
and the watchdog can share them without pulling in the web3 stack.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

SQUARE_COUNT = 25


def is_valid_square(square: object) -> bool:
    """True for an integer slot index in ``[0, SQUARE_COUNT)``."""
    return isinstance(square, int) and not isinstance(square, bool) and 0 <= square < SQUARE_COUNT


class InvalidSnapshot(ValueError):
    """Decoded round data violates the snapshot invariants."""


@dataclass(frozen=True)
class RoundDetails:
    """
    Decoded ``getRoundDetails(roundId)`` payload, amounts in ether.
    """

    end_time_unix: int
    total_staked: Decimal
    square_stakes: Tuple[Decimal, ...]
    finalized: bool
    winner: int = 0


@dataclass(frozen=True)
class RoundSnapshot:
    """
    Immutable read of the current round, replaced wholesale on every poll.

    ``winner`` is ``None`` unless the round is finalized. ``fetched_at`` is the
    local wall-clock time of the read and does not take part in equality.
    """

    round_id: int
    end_time_unix: int
    total_staked: Decimal
    square_stakes: Tuple[Decimal, ...]
    finalized: bool = False
    winner: Optional[int] = None
    fetched_at: float = field(default_factory=time.time, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.round_id, int) or self.round_id < 0:
            raise InvalidSnapshot(f"round_id must be a non-negative integer, got {self.round_id!r}")
        if len(self.square_stakes) != SQUARE_COUNT:
            raise InvalidSnapshot(
                f"expected {SQUARE_COUNT} square stakes, got {len(self.square_stakes)}"
            )
        if self.finalized and not is_valid_square(self.winner):
            raise InvalidSnapshot(f"finalized round {self.round_id} has invalid winner {self.winner!r}")
        if not self.finalized and self.winner is not None:
            raise InvalidSnapshot(f"round {self.round_id} is not finalized but names winner {self.winner}")

    @classmethod
    def from_details(
        cls,
        round_id: int,
        details: RoundDetails,
        fetched_at: Optional[float] = None,
    ) -> RoundSnapshot:
        """Build a snapshot from decoded contract data.

        The contract reports winner 0 for rounds that are still open, so the
        winner is only carried over for finalized rounds.
        """
        return cls(
            round_id=int(round_id),
            end_time_unix=int(details.end_time_unix),
            total_staked=Decimal(details.total_staked),
            square_stakes=tuple(Decimal(s) for s in details.square_stakes),
            finalized=bool(details.finalized),
            winner=int(details.winner) if details.finalized else None,
            fetched_at=time.time() if fetched_at is None else fetched_at,
        )

    def stake_on(self, square: int) -> Decimal:
        return self.square_stakes[square]

    def with_stake(self, square: int, amount: Decimal) -> RoundSnapshot:
        """Copy of this snapshot with ``amount`` added to ``square`` and the total."""
        stakes = list(self.square_stakes)
        stakes[square] = stakes[square] + amount
        return replace(
            self,
            total_staked=self.total_staked + amount,
            square_stakes=tuple(stakes),
        )


class PhaseKind(Enum):
    """Display phase of a round."""

    ACTIVE = "active"
    EXPIRED = "expired"  # Deadline passed, waiting for the watchdog
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Phase:
    kind: PhaseKind
    seconds_remaining: int = 0
    winner: Optional[int] = None

    @classmethod
    def active(cls, seconds_remaining: int) -> Phase:
        return cls(PhaseKind.ACTIVE, seconds_remaining=int(seconds_remaining))

    @classmethod
    def expired(cls) -> Phase:
        return cls(PhaseKind.EXPIRED)

    @classmethod
    def finalized(cls, winner: Optional[int]) -> Phase:
        return cls(PhaseKind.FINALIZED, winner=winner)

    @property
    def is_active(self) -> bool:
        return self.kind is PhaseKind.ACTIVE


@dataclass
class SelectionState:
    """
    The square a user picked, scoped to the round it was picked in.
    """

    selected_square: Optional[int] = None
    round_id: Optional[int] = None

    def select(self, square: int, snapshot: RoundSnapshot) -> bool:
        """Select ``square`` for ``snapshot``'s round. Refused once the round is finalized."""
        if snapshot.finalized or not is_valid_square(square):
            return False
        self.selected_square = square
        self.round_id = snapshot.round_id
        return True

    def observe(self, snapshot: RoundSnapshot) -> None:
        """Drop the selection when the observed round changes."""
        if self.round_id is not None and snapshot.round_id != self.round_id:
            self.clear()

    def clear(self) -> None:
        self.selected_square = None
        self.round_id = None


class SubmissionStatus(Enum):
    """Lifecycle of a stake transaction sent by this client."""

    BROADCASTING = "broadcasting"  # Recorded, write not yet returned
    SUBMITTED = "submitted"  # Accepted by the node, not yet reflected
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class PendingSubmission:
    target_round_id: int
    square: int
    submitted_at: float
    fee: Decimal
    baseline_stake: Decimal
    tx_handle: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.BROADCASTING


def empty_stakes() -> Tuple[Decimal, ...]:
    return tuple(Decimal(0) for _ in range(SQUARE_COUNT))
