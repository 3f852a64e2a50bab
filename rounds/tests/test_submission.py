"""
Tests for the stake submission controller.
"""

import asyncio
from decimal import Decimal

import pytest

from ledger.errors import LedgerGuardRejection, StaleSubmission, SubmissionNotAllowed, SubmissionRejected
from ledger.mocks import MockLedger
from ledger.protocol import TransactionStatus
from ledger.sync import OutcomeKind, RoundStatePoller, StakeSubmissionController
from rounds.models import SubmissionStatus

FEE = Decimal("0.0001")


def build(ledger, clock):
    poller = RoundStatePoller(ledger, clock=clock)
    controller = StakeSubmissionController(ledger, poller, entry_fee=FEE, refresh_delay=60.0, clock=clock)
    outcomes = []
    controller.add_listener(outcomes.append)
    return poller, controller, outcomes


class GatedLedger(MockLedger):
    """Mock ledger whose stake writes wait for a gate to open."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = None

    async def submit_stake(self, square, fee):
        await self.gate.wait()
        return await super().submit_stake(square, fee)


class ReceiptlessLedger(MockLedger):
    """Mock ledger without receipt lookup."""

    transaction_status = None


class TestPreconditions:
    """Test local refusals."""

    def test_no_snapshot_yet(self, mock_ledger, clock):
        _, controller, outcomes = build(mock_ledger, clock)
        with pytest.raises(SubmissionNotAllowed):
            asyncio.run(controller.submit(3))
        assert controller.pending is None
        assert outcomes == []

    @pytest.mark.parametrize("square", [-1, 25, 99])
    def test_square_out_of_range(self, mock_ledger, clock, square):
        poller, controller, _ = build(mock_ledger, clock)
        asyncio.run(poller.poll_once())
        with pytest.raises(SubmissionNotAllowed):
            asyncio.run(controller.submit(square))
        assert controller.pending is None

    def test_expired_round(self, mock_ledger, clock):
        poller, controller, _ = build(mock_ledger, clock)
        asyncio.run(poller.poll_once())
        clock.advance(301)
        with pytest.raises(SubmissionNotAllowed):
            asyncio.run(controller.submit(3))
        assert controller.pending is None
        assert mock_ledger.current.total_staked == Decimal(0)

    def test_not_allowed_is_a_rejection(self):
        assert issubclass(SubmissionNotAllowed, SubmissionRejected)


class TestSubmit:
    """Test the submit and reconcile lifecycle."""

    def test_submit_then_confirm(self, mock_ledger, clock):
        poller, controller, outcomes = build(mock_ledger, clock)

        async def scenario():
            await poller.poll_once()
            pending = await controller.submit(7)
            assert pending.status is SubmissionStatus.SUBMITTED
            assert pending.tx_handle is not None
            assert pending.target_round_id == 1

            optimistic = controller.optimistic_snapshot()
            assert optimistic.stake_on(7) == FEE
            assert optimistic.total_staked == FEE
            assert poller.current.stake_on(7) == Decimal(0)

            await poller.poll_once()
            return pending

        pending = asyncio.run(scenario())
        assert controller.pending is None
        assert pending.status is SubmissionStatus.CONFIRMED
        assert [o.kind for o in outcomes] == [OutcomeKind.CONFIRMED]
        assert poller.current.stake_on(7) == FEE
        assert controller.optimistic_snapshot() == poller.current

    def test_second_submit_refused_while_in_flight(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, _ = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            await controller.submit(7)
            with pytest.raises(SubmissionNotAllowed):
                await controller.submit(8)

        asyncio.run(scenario())
        assert controller.pending.square == 7

    def test_second_submit_refused_while_broadcasting(self, clock):
        ledger = GatedLedger(clock=clock)
        poller, controller, _ = build(ledger, clock)

        async def scenario():
            ledger.gate = asyncio.Event()
            await poller.poll_once()
            first = asyncio.ensure_future(controller.submit(3))
            await asyncio.sleep(0)
            assert controller.pending.status is SubmissionStatus.BROADCASTING
            with pytest.raises(SubmissionNotAllowed):
                await controller.submit(4)
            ledger.gate.set()
            return await first

        pending = asyncio.run(scenario())
        assert pending.square == 3
        assert ledger.current.stake_on(3) == FEE
        assert ledger.current.stake_on(4) == Decimal(0)

    def test_wallet_rejection_discards_pending(self, mock_ledger, clock):
        poller, controller, outcomes = build(mock_ledger, clock)
        mock_ledger.reject_writes = "insufficient funds"

        async def scenario():
            await poller.poll_once()
            with pytest.raises(SubmissionRejected):
                await controller.submit(7)

        asyncio.run(scenario())
        assert controller.pending is None
        assert controller.optimistic_snapshot() == poller.current
        assert [o.kind for o in outcomes] == [OutcomeKind.FAILED]
        assert outcomes[0].submission.status is SubmissionStatus.FAILED

    def test_guard_rejection_propagates(self, mock_ledger, clock):
        poller, controller, outcomes = build(mock_ledger, clock)

        async def scenario():
            await poller.poll_once()
            # Deadline passes on the ledger before the local clock notices
            mock_ledger.expire_current_round()
            with pytest.raises(LedgerGuardRejection):
                await controller.submit(7)

        asyncio.run(scenario())
        assert controller.pending is None
        assert [o.kind for o in outcomes] == [OutcomeKind.FAILED]


class TestReconcile:
    """Test reconciliation against later snapshots."""

    def test_stale_after_round_turnover(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            await controller.submit(7)
            clock.advance(301)
            await ledger.submit_advance_round()
            ledger.mine()
            await poller.poll_once()
            await poller.poll_once()

        asyncio.run(scenario())
        assert poller.current.round_id == 2
        assert controller.pending is None
        assert [o.kind for o in outcomes] == [OutcomeKind.STALE]
        error = outcomes[0].error
        assert isinstance(error, StaleSubmission)
        assert error.target_round_id == 1
        assert error.observed_round_id == 2
        assert outcomes[0].submission.status is not SubmissionStatus.CONFIRMED

    def test_reverted_receipt_fails(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            pending = await controller.submit(7)
            ledger.receipts[pending.tx_handle] = TransactionStatus.REVERTED
            await poller.poll_once()

        asyncio.run(scenario())
        assert controller.pending is None
        assert [o.kind for o in outcomes] == [OutcomeKind.FAILED]
        assert isinstance(outcomes[0].error, LedgerGuardRejection)

    def test_unmined_stays_submitted(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            await controller.submit(7)
            await poller.poll_once()

        asyncio.run(scenario())
        assert outcomes == []
        assert controller.pending.status is SubmissionStatus.SUBMITTED
        assert controller.optimistic_snapshot().stake_on(7) == FEE

    def test_other_stake_on_same_square_does_not_confirm(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            pending = await controller.submit(7)
            # Another player's stake lands first
            ledger.current.square_stakes[7] += FEE
            await poller.poll_once()
            assert outcomes == []
            assert pending.status is SubmissionStatus.SUBMITTED
            assert controller.optimistic_snapshot().stake_on(7) == FEE * 2

            ledger.mine()
            await poller.poll_once()
            return pending

        pending = asyncio.run(scenario())
        assert [o.kind for o in outcomes] == [OutcomeKind.CONFIRMED]
        assert pending.status is SubmissionStatus.CONFIRMED
        assert poller.current.stake_on(7) == FEE * 2

    def test_pending_receipt_waits_for_next_poll(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            pending = await controller.submit(7)
            ledger.mine()
            # Node has not indexed the receipt yet
            ledger.receipts.pop(pending.tx_handle)
            await poller.poll_once()
            assert outcomes == []
            ledger.receipts[pending.tx_handle] = TransactionStatus.SUCCESS
            await poller.poll_once()

        asyncio.run(scenario())
        assert [o.kind for o in outcomes] == [OutcomeKind.CONFIRMED]
        assert controller.pending is None

    def test_confirmed_by_reflected_stake_without_receipts(self, clock):
        ledger = ReceiptlessLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            await controller.submit(7)
            await poller.poll_once()
            assert outcomes == []
            assert controller.optimistic_snapshot().stake_on(7) == FEE
            ledger.mine()
            await poller.poll_once()

        asyncio.run(scenario())
        assert [o.kind for o in outcomes] == [OutcomeKind.CONFIRMED]
        assert controller.pending is None

    def test_closed_controller_stops_reconciling(self, clock):
        ledger = MockLedger(clock=clock, auto_mine=False)
        poller, controller, outcomes = build(ledger, clock)

        async def scenario():
            await poller.poll_once()
            await controller.submit(7)
            controller.close()
            ledger.mine()
            await poller.poll_once()

        asyncio.run(scenario())
        assert outcomes == []
        assert controller.in_flight

    def test_round_turns_over_while_broadcasting(self, clock):
        ledger = GatedLedger(clock=clock)
        poller, controller, outcomes = build(ledger, clock)
        refreshes = []
        poller.request_refresh = refreshes.append

        async def scenario():
            ledger.gate = asyncio.Event()
            await poller.poll_once()
            in_flight = asyncio.ensure_future(controller.submit(3))
            await asyncio.sleep(0)
            assert controller.pending.status is SubmissionStatus.BROADCASTING

            # A watchdog advances the round before the write returns
            clock.advance(301)
            await ledger.submit_advance_round()
            await poller.poll_once()
            assert poller.current.round_id == 2

            ledger.gate.set()
            pending = await in_flight
            await poller.poll_once()
            return pending

        pending = asyncio.run(scenario())
        assert [o.kind for o in outcomes] == [OutcomeKind.STALE]
        assert isinstance(outcomes[0].error, StaleSubmission)
        assert pending.status is not SubmissionStatus.SUBMITTED
        assert pending.tx_handle is None
        assert controller.pending is None
        assert refreshes == []
