"""Environment-driven configuration for BaseMiner clients and the watchdog."""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from ledger.protocol import (
    BASE_SEPOLIA_CHAIN_ID,
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_ENTRY_FEE_ETH,
    DEFAULT_RPC_URL,
)

load_dotenv()


def _str_to_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def _env_decimal(key: str, default: Decimal) -> Decimal:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return Decimal(raw.strip())
    except (InvalidOperation, ValueError):
        return default


def _normalized(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


# Environment profile (local | testing | production) ---------------------- #
# Controls default values across the configuration.
ENVIRONMENT = os.getenv("BASEMINER_ENV", "local").strip().lower()

if ENVIRONMENT not in {"local", "testing", "production"}:
    ENVIRONMENT = "local"

TESTING = _str_to_bool(
    os.getenv("BASEMINER_TESTING", "true" if ENVIRONMENT == "testing" else "false")
)

# Ledger endpoint ---------------------------------------------------------- #

# RPC_URL / PRIVATE_KEY are accepted as-is so an existing bot .env keeps working.
RPC_URL = (
    _normalized(os.getenv("BASEMINER_RPC_URL"))
    or _normalized(os.getenv("RPC_URL"))
    or DEFAULT_RPC_URL
)
CONTRACT_ADDRESS = _normalized(os.getenv("BASEMINER_CONTRACT_ADDRESS")) or DEFAULT_CONTRACT_ADDRESS
CHAIN_ID = _env_int("BASEMINER_CHAIN_ID", BASE_SEPOLIA_CHAIN_ID)
PRIVATE_KEY = _normalized(os.getenv("BASEMINER_PRIVATE_KEY")) or _normalized(os.getenv("PRIVATE_KEY"))
RPC_TIMEOUT_SECONDS = _env_float("BASEMINER_RPC_TIMEOUT_SECONDS", 10.0)

# In-memory ledger instead of a real RPC endpoint (offline runs)
MOCK_LEDGER = _str_to_bool(
    os.getenv("BASEMINER_MOCK_LEDGER", "true" if TESTING else "false")
)
MOCK_ROUND_DURATION_SECONDS = _env_int("BASEMINER_MOCK_ROUND_DURATION_SECONDS", 300)

# Timings ------------------------------------------------------------------ #

POLL_INTERVAL_SECONDS = _env_float("BASEMINER_POLL_INTERVAL_SECONDS", 3.0)
COUNTDOWN_TICK_SECONDS = _env_float("BASEMINER_COUNTDOWN_TICK_SECONDS", 1.0)
# Extra poll after a stake broadcast, only to shorten perceived latency
REFRESH_DELAY_SECONDS = _env_float("BASEMINER_REFRESH_DELAY_SECONDS", 2.0)
WATCHDOG_INTERVAL_SECONDS = _env_float(
    "BASEMINER_WATCHDOG_INTERVAL_SECONDS", 5.0 if TESTING else 60.0
)

# Staking ------------------------------------------------------------------ #

ENTRY_FEE_ETH = _env_decimal("BASEMINER_ENTRY_FEE_ETH", DEFAULT_ENTRY_FEE_ETH)

# Logging ------------------------------------------------------------------ #

LOG_LEVEL = os.getenv("BASEMINER_LOG_LEVEL", "DEBUG" if TESTING else "INFO").upper()

# HTTP endpoint configuration ---------------------------------------------- #

ENABLE_HTTP_ENDPOINTS = _str_to_bool(
    os.getenv("BASEMINER_ENABLE_HTTP_ENDPOINTS", "true")
)
HTTP_PORT = _env_int("BASEMINER_HTTP_PORT", 8000)
HTTP_HOST = os.getenv("BASEMINER_HTTP_HOST", "0.0.0.0")

__all__ = [
    "ENVIRONMENT",
    "TESTING",
    "RPC_URL",
    "CONTRACT_ADDRESS",
    "CHAIN_ID",
    "PRIVATE_KEY",
    "RPC_TIMEOUT_SECONDS",
    "MOCK_LEDGER",
    "MOCK_ROUND_DURATION_SECONDS",
    "POLL_INTERVAL_SECONDS",
    "COUNTDOWN_TICK_SECONDS",
    "REFRESH_DELAY_SECONDS",
    "WATCHDOG_INTERVAL_SECONDS",
    "ENTRY_FEE_ETH",
    "LOG_LEVEL",
    "ENABLE_HTTP_ENDPOINTS",
    "HTTP_PORT",
    "HTTP_HOST",
]
