"""In-memory stand-in for the round contract, used for offline runs and tests.

The mock mirrors the on-ledger guards the clients rely on: a round can only be
advanced once its deadline passed, and a stake is only accepted on an open,
unexpired round with the exact entry fee. Guard failures raise
``LedgerGuardRejection`` at submission time, the way a reverted gas estimate
does against a real node.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from ledger.errors import LedgerGuardRejection, SubmissionRejected, TransientReadFailure
from ledger.protocol import DEFAULT_ENTRY_FEE_ETH, TransactionStatus, eth_to_wei
from rounds.models import SQUARE_COUNT, RoundDetails, empty_stakes, is_valid_square


@dataclass
class MockRound:
    end_time_unix: int
    square_stakes: List[Decimal] = field(default_factory=lambda: list(empty_stakes()))
    finalized: bool = False
    winner: int = 0

    @property
    def total_staked(self) -> Decimal:
        return sum(self.square_stakes, Decimal(0))


class MockLedger:
    def __init__(
        self,
        round_duration: int = 300,  # seconds
        clock: Callable[[], float] = time.time,
        entry_fee: Decimal = DEFAULT_ENTRY_FEE_ETH,
        start_round_id: int = 1,
        auto_mine: bool = True,
    ) -> None:
        self.round_duration = int(round_duration)
        self.clock = clock
        self.entry_fee = Decimal(entry_fee)
        self.auto_mine = auto_mine
        self.round_id = int(start_round_id)
        self.rounds: Dict[int, MockRound] = {
            self.round_id: MockRound(end_time_unix=int(clock()) + self.round_duration)
        }
        # Counts applied round transitions; guarded rejections leave it untouched.
        self.advance_count = 0
        self.failing_reads = 0
        self.reject_writes: Optional[str] = None
        self.receipts: Dict[str, TransactionStatus] = {}
        self._queued: List[Tuple[str, str, Tuple[Any, ...]]] = []
        self._tx_counter = itertools.count(1)

    # Test helpers ----------------------------------------------------- #

    @property
    def current(self) -> MockRound:
        return self.rounds[self.round_id]

    def expire_current_round(self) -> None:
        self.current.end_time_unix = int(self.clock()) - 1

    def fail_next_reads(self, count: int = 1) -> None:
        self.failing_reads += count

    def mine(self) -> None:
        """Apply queued transactions in order (``auto_mine=False`` only)."""
        queued, self._queued = self._queued, []
        for tx_hash, operation, args in queued:
            try:
                self._apply(operation, *args)
            except LedgerGuardRejection:
                self.receipts[tx_hash] = TransactionStatus.REVERTED
            else:
                self.receipts[tx_hash] = TransactionStatus.SUCCESS

    # Ledger client interface ------------------------------------------ #

    address = "0x000000000000000000000000000000000000dEaD"

    async def __aenter__(self) -> MockLedger:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    async def is_connected(self) -> bool:
        return True

    async def read_current_round_id(self) -> int:
        await asyncio.sleep(0)
        self._maybe_fail("roundId")
        return self.round_id

    async def read_round_details(self, round_id: int) -> RoundDetails:
        await asyncio.sleep(0)
        self._maybe_fail(f"getRoundDetails({round_id})")
        rnd = self.rounds.get(int(round_id))
        if rnd is None:
            # Unknown rounds read as zeroed storage, like the contract does
            rnd = MockRound(end_time_unix=0)
        return RoundDetails(
            end_time_unix=rnd.end_time_unix,
            total_staked=rnd.total_staked,
            square_stakes=tuple(rnd.square_stakes),
            finalized=rnd.finalized,
            winner=rnd.winner,
        )

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        await asyncio.sleep(0)
        return self.receipts.get(tx_hash, TransactionStatus.PENDING)

    async def submit_stake(self, square: int, fee: Decimal) -> str:
        await asyncio.sleep(0)
        if not is_valid_square(square):
            raise SubmissionRejected(f"square {square!r} is out of range")
        self._maybe_reject("deploy")
        self._check_stake(square, Decimal(fee))
        return self._submit("deploy", square, Decimal(fee))

    async def submit_advance_round(self) -> str:
        await asyncio.sleep(0)
        self._maybe_reject("reset")
        self._check_advance()
        return self._submit("reset")

    # Internals -------------------------------------------------------- #

    def _maybe_fail(self, operation: str) -> None:
        if self.failing_reads > 0:
            self.failing_reads -= 1
            raise TransientReadFailure(operation, ConnectionError("mock RPC unavailable"))

    def _maybe_reject(self, operation: str) -> None:
        if self.reject_writes:
            raise SubmissionRejected(f"{operation} failed: {self.reject_writes}")

    def _submit(self, operation: str, *args: Any) -> str:
        tx_hash = f"0x{next(self._tx_counter):064x}"
        if self.auto_mine:
            self._apply(operation, *args)
            self.receipts[tx_hash] = TransactionStatus.SUCCESS
        else:
            self._queued.append((tx_hash, operation, args))
        return tx_hash

    def _apply(self, operation: str, *args: Any) -> None:
        if operation == "deploy":
            square, fee = args
            self._check_stake(square, fee)
            self.current.square_stakes[square] += fee
        elif operation == "reset":
            self._check_advance()
            self._advance()
        else:
            raise ValueError(f"unknown operation {operation}")

    def _check_stake(self, square: int, fee: Decimal) -> None:
        rnd = self.current
        if rnd.finalized:
            raise LedgerGuardRejection("deploy", "round finalized")
        if self.clock() >= rnd.end_time_unix:
            raise LedgerGuardRejection("deploy", "round expired")
        if fee != self.entry_fee:
            raise LedgerGuardRejection("deploy", f"fee must be {self.entry_fee}")

    def _check_advance(self) -> None:
        rnd = self.current
        if rnd.finalized:
            raise LedgerGuardRejection("reset", "round already finalized")
        if self.clock() < rnd.end_time_unix:
            raise LedgerGuardRejection("reset", "round not expired")

    def _advance(self) -> None:
        rnd = self.current
        # Payout rules live on the real contract; the mock just picks the
        # heaviest square (lowest index on ties).
        best = max(range(SQUARE_COUNT), key=lambda i: (rnd.square_stakes[i], -i))
        rnd.finalized = True
        rnd.winner = best
        self.round_id += 1
        self.rounds[self.round_id] = MockRound(end_time_unix=int(self.clock()) + self.round_duration)
        self.advance_count += 1

    def build_stake_request(self, square: int, fee: Decimal) -> Dict[str, Any]:
        if not is_valid_square(square):
            raise SubmissionRejected(f"square {square!r} is out of range")
        return {
            "chainId": "eip155:0",
            "method": "eth_sendTransaction",
            "params": {"to": "0x0000000000000000000000000000000000000000", "data": f"deploy({square})", "value": str(eth_to_wei(fee))},
        }


__all__ = ["MockLedger", "MockRound"]
