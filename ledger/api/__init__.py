"""
FastAPI status endpoint.

Exposes the round view and the watchdog state without coupling to the loops.
"""

from .server import create_app, run_api

__all__ = ["create_app", "run_api"]
