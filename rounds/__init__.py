"""Round data model and pure derivations shared by every BaseMiner process."""

from .countdown import CountdownTicker, derive, format_phase
from .models import (
    SQUARE_COUNT,
    InvalidSnapshot,
    PendingSubmission,
    Phase,
    PhaseKind,
    RoundDetails,
    RoundSnapshot,
    SelectionState,
    SubmissionStatus,
    is_valid_square,
)
from .periodic import PeriodicTask

__all__ = [
    "SQUARE_COUNT",
    "CountdownTicker",
    "InvalidSnapshot",
    "PendingSubmission",
    "PeriodicTask",
    "Phase",
    "PhaseKind",
    "RoundDetails",
    "RoundSnapshot",
    "SelectionState",
    "SubmissionStatus",
    "derive",
    "format_phase",
    "is_valid_square",
]
