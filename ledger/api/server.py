"""
FastAPI endpoint for round status.

Serves the poller's current view, the watchdog state machine and unsigned
stake requests for external wallets. Runs on a separate port (default 8000)
next to the watchdog; with ``run_loops`` the app owns the poller and watchdog
lifecycles through its lifespan.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from uvicorn import run as uvicorn_run

from ledger import __version__
from ledger.config import ENTRY_FEE_ETH, HTTP_HOST, HTTP_PORT
from ledger.errors import SubmissionRejected
from rounds.countdown import derive, format_phase

logger = logging.getLogger(__name__)


# ================================================================== #
# REQUEST/RESPONSE MODELS
# ================================================================== #


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str
    poller_ready: bool
    fetch_error: bool
    ledger_connected: Optional[bool] = None
    watchdog_state: Optional[str] = None
    timestamp: str


class RoundResponse(BaseModel):
    """Current round as last published by the poller."""

    round_id: int
    end_time_unix: int
    total_staked: str
    """Ether, as a decimal string"""
    square_stakes: List[str]
    finalized: bool
    winner: Optional[int] = None
    phase: str
    seconds_remaining: int
    countdown: str
    fetched_at: float
    fetch_error: bool


class StakeRequest(BaseModel):
    """Request model for an unsigned stake transaction."""

    square: int
    """0-based square index"""


class StakeTransactionResponse(BaseModel):
    """Unsigned ``eth_sendTransaction`` request for a wallet."""

    chainId: str
    method: str
    params: Dict[str, Any]


# ================================================================== #
# FASTAPI APPLICATION
# ================================================================== #


def create_app(
    poller: Any = None,
    watchdog: Any = None,
    ledger: Any = None,
    entry_fee: Decimal = ENTRY_FEE_ETH,
    clock: Callable[[], float] = time.time,
    run_loops: bool = False,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        poller: RoundStatePoller backing ``/round``
        watchdog: WatchdogResetter backing ``/watchdog``
        ledger: Ledger client used to build ``/tx/stake`` requests
        entry_fee: Payable value of one stake, in ether
        clock: Wall-clock source for the countdown
        run_loops: Start and stop the poller and watchdog with the app
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if run_loops:
            if poller is not None:
                poller.start()
            if watchdog is not None:
                watchdog.start()
            logger.info("status api ready (loops running)")
        try:
            yield
        finally:
            if run_loops:
                if watchdog is not None:
                    await watchdog.stop()
                if poller is not None:
                    await poller.stop()
                disconnect = getattr(ledger, "disconnect", None)
                if disconnect is not None:
                    await disconnect()

    app = FastAPI(
        title="BaseMiner Round Status API",
        description="Round view, watchdog state and stake requests",
        version=__version__,
        lifespan=lifespan,
    )

    # ================================================================ #
    # ENDPOINTS
    # ================================================================ #

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check() -> HealthCheckResponse:
        """Check API health and loop status."""
        snapshot = poller.current if poller is not None else None
        fetch_error = bool(poller.fetch_error) if poller is not None else False
        connected = await ledger.is_connected() if ledger is not None else None
        return HealthCheckResponse(
            status="degraded" if fetch_error or connected is False else "healthy",
            poller_ready=snapshot is not None,
            fetch_error=fetch_error,
            ledger_connected=connected,
            watchdog_state=watchdog.state.value if watchdog is not None else None,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/round", response_model=RoundResponse)
    async def get_round() -> RoundResponse:
        """
        Current round with its derived phase.

        Raises:
            HTTPException: 503 until the first snapshot was published
        """
        if poller is None:
            raise HTTPException(status_code=503, detail="Round poller not configured")
        snapshot = poller.current
        if snapshot is None:
            raise HTTPException(status_code=503, detail="No round snapshot yet")

        phase = derive(snapshot, clock())
        return RoundResponse(
            round_id=snapshot.round_id,
            end_time_unix=snapshot.end_time_unix,
            total_staked=str(snapshot.total_staked),
            square_stakes=[str(s) for s in snapshot.square_stakes],
            finalized=snapshot.finalized,
            winner=snapshot.winner,
            phase=phase.kind.value,
            seconds_remaining=phase.seconds_remaining,
            countdown=format_phase(phase),
            fetched_at=snapshot.fetched_at,
            fetch_error=poller.fetch_error,
        )

    @app.get("/watchdog")
    async def get_watchdog() -> dict:
        """Watchdog state machine status."""
        if watchdog is None:
            raise HTTPException(status_code=404, detail="Watchdog not running in this process")
        return watchdog.status()

    @app.post("/tx/stake", response_model=StakeTransactionResponse)
    async def stake_transaction(request: StakeRequest) -> StakeTransactionResponse:
        """
        Unsigned stake transaction for an external wallet.

        Raises:
            HTTPException: 400 for an out-of-range square, 503 without a ledger
        """
        if ledger is None:
            raise HTTPException(status_code=503, detail="Ledger not configured")
        try:
            tx = ledger.build_stake_request(request.square, entry_fee)
        except SubmissionRejected as e:
            raise HTTPException(status_code=400, detail=str(e))
        return StakeTransactionResponse(**tx)

    return app


# ================================================================== #
# MAIN
# ================================================================== #


def run_api(app: Optional[FastAPI] = None, host: str = HTTP_HOST, port: int = HTTP_PORT) -> None:
    """
    Run the status API server.

    Args:
        app: Application to serve (default: a bare app with no loops attached)
        host: Host to bind to (default 0.0.0.0)
        port: Port to bind to (default 8000)
    """
    if app is None:
        app = create_app()

    logger.info(f"🚀 Starting BaseMiner status API on {host}:{port}")

    uvicorn_run(
        app,
        host=host,
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    run_api()
