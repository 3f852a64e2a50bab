"""Client-side synchronisation with the round ledger."""

from .poller import RoundStatePoller
from .submission import OutcomeKind, StakeSubmissionController, SubmissionOutcome

__all__ = [
    "RoundStatePoller",
    "StakeSubmissionController",
    "SubmissionOutcome",
    "OutcomeKind",
]
