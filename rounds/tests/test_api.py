"""
Tests for the round status API.
"""

import asyncio

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.client import LedgerClient
from ledger.protocol import DEFAULT_ENTRY_FEE_ETH, eth_to_wei
from ledger.sync import RoundStatePoller
from ledger.watchdog import WatchdogResetter


@pytest.fixture
def poller(mock_ledger, clock):
    return RoundStatePoller(mock_ledger, clock=clock)


@pytest.fixture
def watchdog(mock_ledger, clock):
    return WatchdogResetter(mock_ledger, interval=60, clock=clock)


@pytest.fixture
def client(poller, watchdog, mock_ledger, clock):
    app = create_app(poller=poller, watchdog=watchdog, ledger=mock_ledger, clock=clock)
    return TestClient(app)


class TestHealth:
    def test_health_before_first_poll(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["poller_ready"] is False
        assert body["watchdog_state"] == "idle"
        assert body["ledger_connected"] is True

    def test_health_degraded_on_fetch_error(self, client, poller, mock_ledger):
        mock_ledger.fail_next_reads(1)
        asyncio.run(poller.poll_once())
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["fetch_error"] is True

    def test_health_degraded_when_ledger_unreachable(self, poller, mock_ledger):
        async def unreachable():
            return False

        mock_ledger.is_connected = unreachable
        body = TestClient(create_app(poller=poller, ledger=mock_ledger)).get("/health").json()
        assert body["status"] == "degraded"
        assert body["ledger_connected"] is False


class TestRound:
    def test_round_unavailable_before_first_poll(self, client):
        assert client.get("/round").status_code == 503

    def test_round_view(self, client, poller, clock):
        asyncio.run(poller.poll_once())
        clock.advance(235)

        response = client.get("/round")
        assert response.status_code == 200
        body = response.json()
        assert body["round_id"] == 1
        assert body["phase"] == "active"
        assert body["seconds_remaining"] == 65
        assert body["countdown"] == "1m 05s"
        assert len(body["square_stakes"]) == 25
        assert body["winner"] is None
        assert body["fetch_error"] is False

    def test_round_expired(self, client, poller, clock):
        asyncio.run(poller.poll_once())
        clock.advance(305)
        body = client.get("/round").json()
        assert body["phase"] == "expired"
        assert body["countdown"] == "Time is up (awaiting reset)"


class TestWatchdog:
    def test_watchdog_status(self, client, watchdog, clock):
        clock.advance(305)
        asyncio.run(watchdog.tick())
        body = client.get("/watchdog").json()
        assert body["state"] == "idle"
        assert body["last_outcome"] == "reset_submitted"

    def test_watchdog_not_configured(self, poller):
        client = TestClient(create_app(poller=poller))
        assert client.get("/watchdog").status_code == 404


class TestStakeRequest:
    def test_stake_request(self, client):
        response = client.post("/tx/stake", json={"square": 7})
        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "eth_sendTransaction"
        assert body["params"]["value"] == str(eth_to_wei(DEFAULT_ENTRY_FEE_ETH))

    def test_stake_request_bad_square(self, client):
        assert client.post("/tx/stake", json={"square": 25}).status_code == 400

    def test_stake_request_for_contract(self):
        client = TestClient(create_app(ledger=LedgerClient()))
        body = client.post("/tx/stake", json={"square": 0}).json()
        assert body["chainId"] == "eip155:84532"
        assert body["params"]["data"][-64:] == "0" * 64

    def test_stake_request_without_ledger(self):
        client = TestClient(create_app())
        assert client.post("/tx/stake", json={"square": 1}).status_code == 503


def test_lifespan_runs_loops(poller, watchdog, mock_ledger, clock):
    app = create_app(poller=poller, watchdog=watchdog, ledger=mock_ledger, clock=clock, run_loops=True)
    with TestClient(app) as client:
        assert client.get("/watchdog").json()["running"] is True
    assert not poller.running
    assert not watchdog.running
