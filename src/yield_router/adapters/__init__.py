"""Protocol adapters used by :mod:`yield_router`."""

from __future__ import annotations

from .base import PairState, StrategyAdapter, exchange_rate
from .dispatch import ADAPTERS, ProtocolDispatcher
from .interfaces import (
    CompoundClient,
    FundsGateway,
    LendingPoolClient,
    LiquidStakingClient,
    LPStakingClient,
    ReceiptToken,
    SupportsExchangeRate,
)
from .lending import LendingAdapter
from .liquid import LiquidStakingAdapter
from .lp import CompoundAdapter, LPStakingAdapter

__all__ = [
    "ADAPTERS",
    "ProtocolDispatcher",
    "PairState",
    "StrategyAdapter",
    "exchange_rate",
    "CompoundClient",
    "FundsGateway",
    "LendingPoolClient",
    "LiquidStakingClient",
    "LPStakingClient",
    "ReceiptToken",
    "SupportsExchangeRate",
    "LendingAdapter",
    "LiquidStakingAdapter",
    "CompoundAdapter",
    "LPStakingAdapter",
]
