"""
BaseMiner watchdog process.

Checks the current round every interval and advances it once its deadline
has passed. Any number of these may run against the same contract; the
ledger's guard lets exactly one reset through per round.

    python -m agents.watchdog                # loop forever
    python -m agents.watchdog --watchdog.once
    python -m agents.watchdog --mock --watchdog.interval 5
"""

from __future__ import annotations

import asyncio
import logging
import sys
from argparse import Namespace

from ledger.cli_config import build_ledger, config as build_config, configure_logging
from ledger.watchdog import TickOutcome, WatchdogResetter

logger = logging.getLogger(__name__)

FAILED_OUTCOMES = {TickOutcome.READ_FAILED, TickOutcome.RESET_FAILED}


def check_signing_key(cfg: Namespace) -> bool:
    """The watchdog must be able to sign resets unless it runs on the mock ledger."""
    if cfg.mock or cfg.ledger.private_key:
        return True
    logger.error("BASEMINER_PRIVATE_KEY (or PRIVATE_KEY) is required to run the watchdog")
    return False


async def run_watchdog(cfg: Namespace, ledger=None) -> int:
    """
    Run the watchdog until cancelled, or a single tick with ``--watchdog.once``.

    Returns:
        Process exit code
    """
    if not check_signing_key(cfg):
        return 1
    ledger = ledger if ledger is not None else build_ledger(cfg)

    async with ledger:
        logger.info(f"Watchdog address: {ledger.address}")
        logger.info(f"Ledger: {'in-memory mock' if cfg.mock else cfg.ledger.rpc_url}")
        if not await ledger.is_connected():
            logger.warning("Ledger RPC not reachable yet, checks will keep retrying")
        watchdog = WatchdogResetter(ledger, interval=cfg.watchdog.interval)

        if cfg.watchdog.once:
            outcome = await watchdog.tick()
            logger.info(f"Single check finished: {outcome.value}")
            return 1 if outcome in FAILED_OUTCOMES else 0

        async with watchdog:
            await asyncio.Event().wait()
    return 0


def main() -> None:
    cfg = build_config(role="watchdog")
    configure_logging(cfg.logging.level)
    try:
        sys.exit(asyncio.run(run_watchdog(cfg)))
    except KeyboardInterrupt:
        logger.info("✓ Watchdog shutting down.")


if __name__ == "__main__":
    main()
