"""
Stake submission controller: one in-flight stake per client, reconciled against polls.

Lifecycle of a submission:
1. ``submit(square)`` records a PendingSubmission for the current round before
   anything is awaited, so a second call is refused immediately
2. The payable write is sent; a rejection discards the record
3. On broadcast the record becomes SUBMITTED and an extra poll is requested
4. Every published snapshot reconciles it:
   - round id changed: stale, discarded
   - receipt reverted: failed
   - receipt succeeded: confirmed
   - ledgers without receipt lookup: confirmed once the stake shows up on
     the square

Correctness relies only on the regular poll cadence; the extra poll just
shortens the wait.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Optional

from ledger.errors import (
    LedgerGuardRejection,
    StaleSubmission,
    SubmissionNotAllowed,
    SubmissionRejected,
)
from ledger.protocol import DEFAULT_ENTRY_FEE_ETH, TransactionStatus
from rounds.countdown import derive
from rounds.models import (
    PendingSubmission,
    RoundSnapshot,
    SubmissionStatus,
    is_valid_square,
)

logger = logging.getLogger(__name__)


class OutcomeKind(Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    STALE = "stale"


@dataclass(frozen=True)
class SubmissionOutcome:
    kind: OutcomeKind
    submission: PendingSubmission
    error: Optional[Exception] = None


OutcomeListener = Callable[[SubmissionOutcome], None]


class StakeSubmissionController:
    """Owns the single PendingSubmission of one client."""

    def __init__(
        self,
        ledger: Any,
        poller: Any,
        entry_fee: Decimal = DEFAULT_ENTRY_FEE_ETH,
        refresh_delay: float = 2.0,  # seconds
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            ledger: Object exposing ``submit_stake`` (and optionally ``transaction_status``)
            poller: RoundStatePoller supplying snapshots; the controller subscribes to it
            entry_fee: Fixed payable value of one stake, in ether
            refresh_delay: Delay of the extra poll requested after a broadcast
            clock: Wall-clock source for phase checks
        """
        self.ledger = ledger
        self.poller = poller
        self.entry_fee = Decimal(entry_fee)
        self.refresh_delay = refresh_delay
        self._clock = clock
        self._listeners: List[OutcomeListener] = []
        self.pending: Optional[PendingSubmission] = None
        self._unsubscribe = poller.subscribe(self.reconcile)

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def close(self) -> None:
        """Stop reconciling against the poller."""
        self._unsubscribe()

    @property
    def in_flight(self) -> bool:
        return self.pending is not None

    def _check_preconditions(self, square: int) -> RoundSnapshot:
        if not is_valid_square(square):
            raise SubmissionNotAllowed(f"square {square!r} is out of range")
        if self.pending is not None:
            raise SubmissionNotAllowed(
                f"a stake on square {self.pending.square} is already in flight"
            )
        snapshot = self.poller.current
        if snapshot is None:
            raise SubmissionNotAllowed("no round snapshot yet")
        phase = derive(snapshot, self._clock())
        if not phase.is_active:
            raise SubmissionNotAllowed(f"round {snapshot.round_id} is {phase.kind.value}")
        return snapshot

    async def submit(self, square: int) -> PendingSubmission:
        """
        Stake the entry fee on ``square`` in the current round.

        Returns:
            The PendingSubmission, status SUBMITTED

        Raises:
            SubmissionNotAllowed: precondition failed, nothing was changed
            SubmissionRejected: the signer or node refused the write
            LedgerGuardRejection: the contract refused the stake
        """
        snapshot = self._check_preconditions(square)
        pending = PendingSubmission(
            target_round_id=snapshot.round_id,
            square=square,
            submitted_at=self._clock(),
            fee=self.entry_fee,
            baseline_stake=snapshot.stake_on(square),
        )
        self.pending = pending
        logger.info(f"Staking {self.entry_fee} ETH on square #{square + 1} (round {snapshot.round_id})")

        try:
            tx_handle = await self.ledger.submit_stake(square, self.entry_fee)
        except (SubmissionRejected, LedgerGuardRejection) as e:
            self._finish(pending, OutcomeKind.FAILED, e)
            logger.warning(f"Stake on square #{square + 1} rejected: {e}")
            raise
        except Exception as e:
            wrapped = SubmissionRejected(f"deploy failed: {e}")
            self._finish(pending, OutcomeKind.FAILED, wrapped)
            logger.error(f"Stake on square #{square + 1} failed: {e}", exc_info=True)
            raise wrapped from e

        if self.pending is not pending:
            # Reconciled away (round turned over) while the write was in flight
            return pending
        pending.tx_handle = tx_handle
        pending.status = SubmissionStatus.SUBMITTED
        logger.info(f"Stake transaction sent: {tx_handle}")
        try:
            self.poller.request_refresh(self.refresh_delay)
        except Exception as e:
            logger.debug(f"Refresh request skipped: {e}")
        return pending

    async def reconcile(self, snapshot: RoundSnapshot) -> Optional[SubmissionOutcome]:
        """Settle the pending submission against a freshly published snapshot."""
        pending = self.pending
        if pending is None:
            return None

        if snapshot.round_id != pending.target_round_id:
            stale = StaleSubmission(pending.target_round_id, snapshot.round_id)
            logger.info(f"Discarding stake on square #{pending.square + 1}: {stale}")
            return self._finish(pending, OutcomeKind.STALE, stale)

        if pending.status is not SubmissionStatus.SUBMITTED:
            return None

        receipt = await self._receipt_status(pending)
        if self.pending is not pending:
            return None
        if receipt is TransactionStatus.REVERTED:
            error = LedgerGuardRejection("deploy", f"transaction {pending.tx_handle} reverted")
            logger.warning(f"Stake on square #{pending.square + 1} reverted")
            return self._finish(pending, OutcomeKind.FAILED, error)

        if self._tracks_receipts:
            # Other players may stake on the same square; only our receipt counts
            settled = receipt is TransactionStatus.SUCCESS
        else:
            settled = self._reflected(snapshot, pending)
        if settled:
            logger.info(f"Stake on square #{pending.square + 1} confirmed in round {snapshot.round_id}")
            return self._finish(pending, OutcomeKind.CONFIRMED)
        return None

    @property
    def _tracks_receipts(self) -> bool:
        return getattr(self.ledger, "transaction_status", None) is not None

    @staticmethod
    def _reflected(snapshot: RoundSnapshot, pending: PendingSubmission) -> bool:
        return snapshot.stake_on(pending.square) >= pending.baseline_stake + pending.fee

    async def _receipt_status(self, pending: PendingSubmission) -> Optional[TransactionStatus]:
        if not self._tracks_receipts or pending.tx_handle is None:
            return None
        try:
            return await self.ledger.transaction_status(pending.tx_handle)
        except Exception as e:
            logger.debug(f"Receipt lookup for {pending.tx_handle} failed: {e}")
            return None

    def _finish(
        self,
        pending: PendingSubmission,
        kind: OutcomeKind,
        error: Optional[Exception] = None,
    ) -> Optional[SubmissionOutcome]:
        if self.pending is not pending:
            return None
        self.pending = None
        if kind is OutcomeKind.CONFIRMED:
            pending.status = SubmissionStatus.CONFIRMED
        elif kind is OutcomeKind.FAILED:
            pending.status = SubmissionStatus.FAILED
        outcome = SubmissionOutcome(kind=kind, submission=pending, error=error)
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Submission listener failed: {e}", exc_info=True)
        return outcome

    def optimistic_snapshot(self) -> Optional[RoundSnapshot]:
        """
        Current snapshot with the in-flight stake applied locally.

        The stake is added while the submission is SUBMITTED for the round on
        display. Without receipt lookup it is dropped as soon as the ledger
        shows the stake on the square.
        """
        snapshot = self.poller.current
        pending = self.pending
        if snapshot is None or pending is None:
            return snapshot
        if pending.status is not SubmissionStatus.SUBMITTED or snapshot.round_id != pending.target_round_id:
            return snapshot
        if not self._tracks_receipts and self._reflected(snapshot, pending):
            return snapshot
        return snapshot.with_stake(pending.square, pending.fee)
