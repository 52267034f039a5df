"""Liquid-staking adapter: the external system reports shares itself."""

from __future__ import annotations

from ..core.errors import ExternalProtocolError
from .base import PairState, call_external
from .interfaces import LiquidStakingClient


class LiquidStakingAdapter:
    """Forward deposits and redemptions opaquely to a liquid-staking client."""

    def __init__(self, name: str, client: LiquidStakingClient) -> None:
        self.name = name
        self.client = client

    def deposit(self, token: str, amount: int, pair: PairState) -> int:
        shares = call_external(self.name, "deposit", self.client.deposit, amount)
        if not isinstance(shares, int) or shares <= 0:
            raise ExternalProtocolError(self.name, "deposit", f"no shares minted ({shares!r})")
        return shares

    def withdraw(self, token: str, shares: int, pair: PairState) -> int:
        amount = call_external(self.name, "withdraw", self.client.withdraw, shares)
        if not isinstance(amount, int) or amount < 0:
            raise ExternalProtocolError(self.name, "withdraw", f"invalid amount {amount!r}")
        return amount

    def underlying_of(self, token: str, shares: int, pair: PairState) -> int:
        # Liquid-staking clients do not expose a quote; report shares at par.
        return shares


__all__ = ["LiquidStakingAdapter"]
