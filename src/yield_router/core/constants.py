"""Core constants shared across yield_router modules."""

from __future__ import annotations

# Rates are expressed in basis points: 10_000 bps == 100%.
BPS_DENOMINATOR = 10_000

ONE_MINUTE = 60
ONE_DAY = 24 * 60 * 60
SECONDS_PER_YEAR = 365 * ONE_DAY

# Lock window accepted by the time-lock engine.
MIN_LOCK_DURATION = ONE_DAY
MAX_LOCK_DURATION = 365 * ONE_DAY

# Fixed-point scale for exchange rates reported by LP and money-market clients.
RATE_PRECISION = 10**18

# Penalty values observed across deployed variants of the aggregator.
EARLY_EXIT_PENALTY_BPS = 500
IMMEDIATE_EXIT_PENALTY_BPS = 200
CLIFF_SECONDS = 7 * ONE_DAY

EMERGENCY_WITHDRAW_DELAY = 7 * ONE_DAY
DEFAULT_FAILURE_THRESHOLD = 3

__all__ = [
    "BPS_DENOMINATOR",
    "ONE_MINUTE",
    "ONE_DAY",
    "SECONDS_PER_YEAR",
    "MIN_LOCK_DURATION",
    "MAX_LOCK_DURATION",
    "RATE_PRECISION",
    "EARLY_EXIT_PENALTY_BPS",
    "IMMEDIATE_EXIT_PENALTY_BPS",
    "CLIFF_SECONDS",
    "EMERGENCY_WITHDRAW_DELAY",
    "DEFAULT_FAILURE_THRESHOLD",
]
