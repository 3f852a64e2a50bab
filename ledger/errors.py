"""
Error taxonomy for ledger reads and writes.

Every loop in the project survives all of these; they only decide how loudly
an outcome is logged and who gets to see it.
"""

from __future__ import annotations

from typing import Optional

from rounds.models import InvalidSnapshot


class RoundSyncError(Exception):
    """Base class for ledger synchronisation errors."""


class TransientReadFailure(RoundSyncError):
    """An RPC read failed; retried on the next tick, surfaced only as a flag."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}" if cause else f"{operation} failed")


class SubmissionRejected(RoundSyncError):
    """The signer or the node refused a write. Reported to the submitter, never retried."""


class SubmissionNotAllowed(SubmissionRejected):
    """A local precondition refused the submission before anything was sent."""


class StaleSubmission(RoundSyncError):
    """The round turned over before the submission was reflected."""

    def __init__(self, target_round_id: int, observed_round_id: int):
        self.target_round_id = target_round_id
        self.observed_round_id = observed_round_id
        super().__init__(
            f"submission for round {target_round_id} is stale (ledger is on round {observed_round_id})"
        )


class LedgerGuardRejection(RoundSyncError):
    """The contract's precondition rejected a redundant or late write."""

    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} rejected by ledger guard: {reason}" if reason else f"{operation} rejected by ledger guard")


__all__ = [
    "RoundSyncError",
    "TransientReadFailure",
    "SubmissionRejected",
    "SubmissionNotAllowed",
    "StaleSubmission",
    "LedgerGuardRejection",
    "InvalidSnapshot",
]
