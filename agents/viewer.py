"""
BaseMiner viewer: follows the current round and optionally stakes on a square.

Every countdown tick logs one line derived from the latest snapshot, with the
in-flight stake applied optimistically until the ledger reflects it.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from argparse import Namespace
from typing import Optional

from ledger.cli_config import build_ledger, config as build_config, configure_logging
from ledger.config import ENTRY_FEE_ETH, REFRESH_DELAY_SECONDS
from ledger.errors import LedgerGuardRejection, SubmissionRejected
from ledger.sync import RoundStatePoller, StakeSubmissionController, SubmissionOutcome
from rounds.countdown import CountdownTicker, format_phase
from rounds.models import Phase, PendingSubmission, RoundSnapshot, SelectionState

logger = logging.getLogger(__name__)


def describe_round(
    snapshot: Optional[RoundSnapshot],
    phase: Optional[Phase],
    selection: Optional[SelectionState] = None,
    pending: Optional[PendingSubmission] = None,
    fetch_error: bool = False,
) -> str:
    """One status line for the round view."""
    if snapshot is None:
        return format_phase(None)
    parts = [
        f"Round {snapshot.round_id}",
        format_phase(phase),
        f"pool {snapshot.total_staked} ETH",
    ]
    if selection is not None and selection.selected_square is not None:
        parts.append(f"selected #{selection.selected_square + 1}")
    if pending is not None:
        parts.append(f"stake #{pending.square + 1} {pending.status.value}")
    if fetch_error:
        parts.append("⚠ ledger unreachable, showing last known state")
    return " | ".join(parts)


async def run_viewer(cfg: Namespace, ledger=None) -> int:
    ledger = ledger if ledger is not None else build_ledger(cfg)
    square = cfg.viewer.stake
    if square is not None and not (cfg.mock or cfg.ledger.private_key):
        logger.error("BASEMINER_PRIVATE_KEY (or PRIVATE_KEY) is required to stake")
        return 1

    async with ledger:
        poller = RoundStatePoller(ledger, interval=cfg.poller.interval)
        controller = StakeSubmissionController(
            ledger, poller, entry_fee=ENTRY_FEE_ETH, refresh_delay=REFRESH_DELAY_SECONDS
        )
        selection = SelectionState()
        settled = asyncio.Event()

        def on_snapshot(snapshot: RoundSnapshot) -> None:
            selection.observe(snapshot)

        def on_outcome(outcome: SubmissionOutcome) -> None:
            logger.info(f"Stake on square #{outcome.submission.square + 1}: {outcome.kind.value}")
            settled.set()

        def on_tick(_snapshot: Optional[RoundSnapshot], phase: Optional[Phase]) -> None:
            view = controller.optimistic_snapshot()
            logger.info(describe_round(view, phase, selection, controller.pending, poller.fetch_error))

        poller.subscribe(on_snapshot)
        controller.add_listener(on_outcome)
        ticker = CountdownTicker(lambda: poller.current, interval=cfg.viewer.countdown_interval)
        ticker.add_listener(on_tick)

        async with poller, ticker:
            if square is not None:
                await _stake_when_ready(poller, controller, selection, square)
            if cfg.viewer.duration > 0:
                await asyncio.sleep(cfg.viewer.duration)
            elif square is not None:
                if controller.in_flight:
                    await settled.wait()
            else:
                await asyncio.Event().wait()
        controller.close()
    return 0


async def _stake_when_ready(
    poller: RoundStatePoller,
    controller: StakeSubmissionController,
    selection: SelectionState,
    square: int,
) -> None:
    while poller.current is None:
        await asyncio.sleep(0.1)
    if not selection.select(square, poller.current):
        logger.warning(f"Square {square} cannot be selected in round {poller.current.round_id}")
        return
    try:
        await controller.submit(square)
    except (SubmissionRejected, LedgerGuardRejection) as e:
        logger.warning(f"Stake not sent: {e}")


def main() -> None:
    cfg = build_config(role="viewer")
    configure_logging(cfg.logging.level)
    try:
        sys.exit(asyncio.run(run_viewer(cfg)))
    except KeyboardInterrupt:
        logger.info("✓ Viewer shutting down.")


if __name__ == "__main__":
    main()
