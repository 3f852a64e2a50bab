"""Long-running BaseMiner processes: the reset watchdog and the round viewer."""
