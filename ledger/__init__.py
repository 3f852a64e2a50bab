"""BaseMiner ledger access: contract client, round sync and the reset watchdog.

The pure round model lives in `rounds`:

    from rounds import RoundSnapshot, derive, format_phase
    from ledger.sync import RoundStatePoller, StakeSubmissionController
    from ledger.watchdog import WatchdogResetter
"""

from __future__ import annotations

__version__ = "1.0.0"

__all__ = [
    "__version__",
]
