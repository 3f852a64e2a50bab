from __future__ import annotations

import argparse
import logging
from typing import Any, Optional

from ledger import config as env


# ───────────────────────── utilities ───────────────────────── #


def _nest(flat: argparse.Namespace) -> argparse.Namespace:
    """Turn dotted destinations (``ledger.rpc_url``) into nested namespaces."""
    root = argparse.Namespace()
    for key, value in vars(flat).items():
        node = root
        *groups, leaf = key.split(".")
        for group in groups:
            if not hasattr(node, group):
                setattr(node, group, argparse.Namespace())
            node = getattr(node, group)
        setattr(node, leaf, value)
    return root


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for an entry point."""
    level = (level or env.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ───────────────────── argument groups (defaults) ───────────────────── #


def add_shared_args(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by the watchdog and the viewer."""
    parser.add_argument("--mock", action="store_true", default=env.MOCK_LEDGER,
                        help="Use the in-memory ledger instead of an RPC endpoint.")

    parser.add_argument("--ledger.rpc_url", type=str, default=env.RPC_URL,
                        help="JSON-RPC endpoint of the chain.")
    parser.add_argument("--ledger.contract_address", type=str, default=env.CONTRACT_ADDRESS,
                        help="Round contract address.")
    parser.add_argument("--ledger.chain_id", type=int, default=env.CHAIN_ID,
                        help="Chain id stamped on signed transactions.")
    parser.add_argument("--ledger.timeout", type=float, default=env.RPC_TIMEOUT_SECONDS,
                        help="RPC request timeout (seconds).")

    parser.add_argument("--poller.interval", type=float, default=env.POLL_INTERVAL_SECONDS,
                        help="Seconds between round polls.")
    parser.add_argument("--logging.level", type=str, default=env.LOG_LEVEL,
                        help="Root log level (DEBUG, INFO, WARNING, ...).")


def add_watchdog_args(parser: argparse.ArgumentParser) -> None:
    """Default watchdog arguments."""
    parser.add_argument("--watchdog.interval", type=float, default=env.WATCHDOG_INTERVAL_SECONDS,
                        help="Seconds between watchdog ticks.")
    parser.add_argument("--watchdog.once", action="store_true", default=False,
                        help="Run a single check (and reset if due), then exit.")

    parser.add_argument("--api.off", action="store_true", default=not env.ENABLE_HTTP_ENDPOINTS,
                        help="Do not serve the status API.")
    parser.add_argument("--api.host", type=str, default=env.HTTP_HOST, help="Status API host.")
    parser.add_argument("--api.port", type=int, default=env.HTTP_PORT, help="Status API port.")


def add_viewer_args(parser: argparse.ArgumentParser) -> None:
    """Default viewer arguments."""
    parser.add_argument("--viewer.stake", type=int, default=None,
                        help="Stake the entry fee on this 0-based square once the round is known.")
    parser.add_argument("--viewer.countdown_interval", type=float, default=env.COUNTDOWN_TICK_SECONDS,
                        help="Seconds between countdown refreshes.")
    parser.add_argument("--viewer.duration", type=float, default=0.0,
                        help="Stop after this many seconds (0 runs until interrupted).")


# ──────────────────────── main entrypoint ───────────────────────── #


def config(role: str = "auto", argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Build and return a nested config with explicit, layered arg addition:
      1) Shared defaults (ledger, poller, logging)
      2) Role-specific defaults (watchdog | viewer | both)
    Args:
        role: "watchdog", "viewer", or "auto" (adds both).
        argv: Arguments to parse (default: ``sys.argv[1:]``).
    """
    parser = argparse.ArgumentParser(conflict_handler="resolve")

    add_shared_args(parser)

    role = role.lower()
    if role == "watchdog":
        add_watchdog_args(parser)
    elif role == "viewer":
        add_viewer_args(parser)
    else:  # "auto" → include both
        add_watchdog_args(parser)
        add_viewer_args(parser)

    cfg = _nest(parser.parse_args(argv))

    # Signing key only ever comes from the environment.
    cfg.ledger.private_key = env.PRIVATE_KEY

    if env.ENVIRONMENT == "production" and cfg.mock:
        raise SystemExit("--mock is not allowed with BASEMINER_ENV=production")

    return cfg


def build_ledger(cfg: argparse.Namespace) -> Any:
    """Ledger client (or in-memory ledger with ``--mock``) for a parsed config."""
    if cfg.mock:
        from ledger.mocks import MockLedger

        return MockLedger(round_duration=env.MOCK_ROUND_DURATION_SECONDS, entry_fee=env.ENTRY_FEE_ETH)

    from ledger.client import LedgerClient

    return LedgerClient(
        rpc_url=cfg.ledger.rpc_url,
        contract_address=cfg.ledger.contract_address,
        private_key=cfg.ledger.private_key,
        chain_id=cfg.ledger.chain_id,
        timeout=cfg.ledger.timeout,
    )


__all__ = ["config", "build_ledger", "configure_logging"]
