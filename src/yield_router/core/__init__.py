"""Core data structures for :mod:`yield_router`.

This subpackage groups the models, registries, errors and constants used
across the project so they can be shared without importing the aggregator
facade exposed in :mod:`yield_router.__init__`.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, SystemClock
from .constants import BPS_DENOMINATOR, RATE_PRECISION, SECONDS_PER_YEAR
from .models import (
    Position,
    PositionSlot,
    PositionSummary,
    ProtocolInfo,
    ProtocolListing,
    Settlement,
    SlotSummary,
    StakeStatus,
    StrategyKind,
    SupportedToken,
    TimeLockedStake,
    TokenListing,
)
from .repositories import ProtocolRegistry, TokenRegistry

__all__ = [
    "BPS_DENOMINATOR",
    "RATE_PRECISION",
    "SECONDS_PER_YEAR",
    "Clock",
    "ManualClock",
    "SystemClock",
    "Position",
    "PositionSlot",
    "PositionSummary",
    "ProtocolInfo",
    "ProtocolListing",
    "Settlement",
    "SlotSummary",
    "StakeStatus",
    "StrategyKind",
    "SupportedToken",
    "TimeLockedStake",
    "TokenListing",
    "ProtocolRegistry",
    "TokenRegistry",
]
