"""BaseMiner repository.

This repo exposes a few top-level Python packages:

- `rounds`  (round model, countdown derivation, periodic tasks)
- `ledger`  (contract client, round sync, reset watchdog, status API)
- `agents`  (watchdog and viewer processes)
"""

__all__ = ["rounds", "ledger", "agents"]
