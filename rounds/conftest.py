"""
Pytest configuration and shared fixtures for all tests.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure the repo root is on `sys.path` so top-level imports work.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

# Tests never touch a real RPC endpoint or a local .env signing key.
os.environ.setdefault("BASEMINER_ENV", "testing")

from ledger.mocks import MockLedger

START_TIME = 1_700_000_000.0
ROUND_DURATION = 300


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    """Fixed wall clock starting at START_TIME."""
    return FakeClock()


@pytest.fixture
def mock_ledger(clock):
    """
    In-memory ledger on round 1, ending ROUND_DURATION seconds after START_TIME.

    Usage:
        def test_something(mock_ledger, clock):
            clock.advance(ROUND_DURATION + 5)  # round 1 is now expired
    """
    return MockLedger(round_duration=ROUND_DURATION, clock=clock)
