"""
yield_router: custodial yield aggregator ledger and protocol dispatch.

Design goals:
- One uniform deposit/withdraw interface over liquid-staking, lending,
  LP-staking and compound-style protocols
- Share accounting that stays fair under rebasing receipt balances
- Time-locked stakes with a pluggable withdrawal policy
- All-or-nothing operations; failures never move funds
- No network access here; external systems are plain Python objects that
  implement the call shapes in :mod:`yield_router.adapters.interfaces`.
"""

from __future__ import annotations

from . import simulation
from .adapters import ProtocolDispatcher
from .aggregator import Aggregator
from .config import build_aggregator, load_config
from .core import (
    ManualClock,
    PositionSummary,
    ProtocolInfo,
    Settlement,
    SlotSummary,
    StakeStatus,
    StrategyKind,
    SupportedToken,
    SystemClock,
    TimeLockedStake,
)
from .core import errors
from .ledger import PositionLedger
from .reporting import positions_report
from .settlement import CliffPolicy, FullSettlementPolicy, MaturityGatedPolicy, SettlementEngine
from .visualization import Visualizer
from .yield_estimator import estimate_accrued

__all__ = [
    "Aggregator",
    "ProtocolDispatcher",
    "PositionLedger",
    "SettlementEngine",
    "FullSettlementPolicy",
    "MaturityGatedPolicy",
    "CliffPolicy",
    "ManualClock",
    "SystemClock",
    "PositionSummary",
    "ProtocolInfo",
    "Settlement",
    "SlotSummary",
    "StakeStatus",
    "StrategyKind",
    "SupportedToken",
    "TimeLockedStake",
    "Visualizer",
    "build_aggregator",
    "load_config",
    "estimate_accrued",
    "positions_report",
    "errors",
    "simulation",
]
