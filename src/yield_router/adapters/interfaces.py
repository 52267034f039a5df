"""Call shapes the aggregator consumes from external systems.

Each strategy kind talks to its external protocol through one of these
structural interfaces. Anything implementing the methods can be registered,
whether it wraps a live contract or an in-memory simulation.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class FundsGateway(Protocol):
    """Moves tokens between depositors and the aggregator's custody account."""

    def pull(self, account: str, token: str, amount: int) -> None: ...

    def push(self, account: str, token: str, amount: int) -> None: ...


class LiquidStakingClient(Protocol):
    def deposit(self, amount: int) -> int: ...

    def withdraw(self, shares: int) -> int: ...


class ReceiptToken(Protocol):
    """Rebasing receipt asset; ``balance_of`` grows without explicit calls."""

    def balance_of(self, holder: str) -> int: ...


class LendingPoolClient(Protocol):
    def supply(self, asset: str, amount: int, on_behalf_of: str) -> None: ...

    def withdraw(self, asset: str, amount: int, to: str) -> int: ...

    def receipt_token(self, asset: str) -> ReceiptToken: ...


class LPStakingClient(Protocol):
    def stake(self, amount: int) -> None: ...

    def unstake(self, amount: int) -> None: ...

    def claim(self) -> int: ...


class CompoundClient(Protocol):
    def deposit(self, amount: int) -> int: ...

    def withdraw(self, shares: int) -> int: ...


@runtime_checkable
class SupportsExchangeRate(Protocol):
    """Underlying per share, scaled by :data:`~yield_router.core.constants.RATE_PRECISION`."""

    def exchange_rate(self) -> int: ...


__all__ = [
    "FundsGateway",
    "LiquidStakingClient",
    "ReceiptToken",
    "LendingPoolClient",
    "LPStakingClient",
    "CompoundClient",
    "SupportsExchangeRate",
]
