#!/usr/bin/env python3
"""
Start the BaseMiner watchdog with the status API in one process.

The API's lifespan owns the round poller and the watchdog loop, so
``/round`` and ``/watchdog`` report the live state of this watchdog.
With the API disabled (``--api.off`` or BASEMINER_ENABLE_HTTP_ENDPOINTS=false)
only the watchdog loop runs.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root))

from agents.watchdog import check_signing_key, run_watchdog
from ledger.api import create_app, run_api
from ledger.cli_config import build_ledger, config as build_config, configure_logging
from ledger.config import ENTRY_FEE_ETH
from ledger.sync import RoundStatePoller
from ledger.watchdog import WatchdogResetter

logger = logging.getLogger("start_watchdog")


def main():
    """Main entry point."""
    cfg = build_config(role="watchdog")
    configure_logging(cfg.logging.level)

    logger.info("=" * 70)
    logger.info("BaseMiner watchdog with round status API")
    logger.info("=" * 70)

    if cfg.api.off or cfg.watchdog.once:
        try:
            sys.exit(asyncio.run(run_watchdog(cfg)))
        except KeyboardInterrupt:
            logger.info("\nShutting down...")
        return

    if not check_signing_key(cfg):
        sys.exit(1)

    ledger = build_ledger(cfg)
    poller = RoundStatePoller(ledger, interval=cfg.poller.interval)
    watchdog = WatchdogResetter(ledger, interval=cfg.watchdog.interval)
    app = create_app(
        poller=poller,
        watchdog=watchdog,
        ledger=ledger,
        entry_fee=ENTRY_FEE_ETH,
        run_loops=True,
    )
    try:
        run_api(app, host=cfg.api.host, port=cfg.api.port)
    except KeyboardInterrupt:
        logger.info("\nShutting down...")


if __name__ == "__main__":
    main()
