"""Strategy selection: route deposits/withdrawals to the matching adapter."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging

from ..core.errors import (
    ConfigurationError,
    InvariantViolationError,
    UnsupportedStrategyError,
    ZeroAmountError,
)
from ..core.models import ProtocolInfo, StrategyKind
from ..core.repositories import ProtocolRegistry
from .base import PairState, StrategyAdapter
from .lending import LendingAdapter
from .liquid import LiquidStakingAdapter
from .lp import CompoundAdapter, LPStakingAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, object, str], StrategyAdapter]

# One entry per StrategyKind; ``ADAPTERS.keys() == set(StrategyKind)``.
ADAPTERS: dict[StrategyKind, AdapterFactory] = {
    StrategyKind.LIQUID: lambda name, client, custodian: LiquidStakingAdapter(name, client),
    StrategyKind.LENDING: lambda name, client, custodian: LendingAdapter(name, client, custodian),
    StrategyKind.LP_STAKING: lambda name, client, custodian: LPStakingAdapter(name, client),
    StrategyKind.COMPOUND: lambda name, client, custodian: CompoundAdapter(name, client),
}


class ProtocolDispatcher:
    """Owns the per-pair pool share counters and the adapter cache.

    ``pairs`` is plain data and is snapshotted by the aggregator's unit of
    work; adapters and clients are not.
    """

    def __init__(
        self,
        protocols: ProtocolRegistry,
        clients: Mapping[str, object],
        custodian: str,
    ) -> None:
        self.protocols = protocols
        self.clients: dict[str, object] = dict(clients)
        self.custodian = custodian
        self.pairs: dict[tuple[str, str], PairState] = {}
        self._adapters: dict[str, StrategyAdapter] = {}

    def register_client(self, external_ref: str, client: object) -> None:
        self.clients[external_ref] = client

    def invalidate(self, protocol: str) -> None:
        self._adapters.pop(protocol, None)

    def adapter_for(self, info: ProtocolInfo) -> StrategyAdapter:
        adapter = self._adapters.get(info.name)
        if adapter is not None:
            return adapter
        factory = ADAPTERS.get(info.kind)
        if factory is None:
            raise UnsupportedStrategyError(info.kind)
        try:
            client = self.clients[info.external_ref]
        except KeyError:
            raise ConfigurationError(
                f"No client registered for {info.name} at {info.external_ref}"
            ) from None
        adapter = factory(info.name, client, self.custodian)
        self._adapters[info.name] = adapter
        return adapter

    def pair(self, token: str, protocol: str) -> PairState:
        return self.pairs.setdefault((token, protocol), PairState())

    def pool_shares(self, token: str, protocol: str) -> int:
        state = self.pairs.get((token, protocol))
        return state.shares if state else 0

    def deposit_to_protocol(self, token: str, protocol: str, amount: int) -> int:
        """Deposit ``amount`` and return the shares issued for it."""

        if amount <= 0:
            raise ZeroAmountError()
        info = self.protocols.get(protocol)
        adapter = self.adapter_for(info)
        state = self.pair(token, protocol)
        shares = adapter.deposit(token, amount, state)
        state.shares += shares
        logger.info(
            "Deposited %d %s into %s (%s): %d shares, pool %d",
            amount,
            token,
            protocol,
            info.kind.value,
            shares,
            state.shares,
        )
        return shares

    def withdraw_from_protocol(self, token: str, protocol: str, shares: int) -> int:
        """Redeem ``shares`` and return the underlying received."""

        if shares <= 0:
            raise ZeroAmountError()
        info = self.protocols.get(protocol)
        adapter = self.adapter_for(info)
        state = self.pair(token, protocol)
        if shares > state.shares:
            raise InvariantViolationError(
                f"Redeeming {shares} shares from {protocol}/{token} exceeds pool total {state.shares}"
            )
        underlying = adapter.withdraw(token, shares, state)
        state.shares -= shares
        logger.info(
            "Withdrew %d shares of %s from %s (%s): %d underlying, pool %d",
            shares,
            token,
            protocol,
            info.kind.value,
            underlying,
            state.shares,
        )
        return underlying

    def underlying_of(self, token: str, protocol: str, shares: int) -> int:
        """Current underlying value of ``shares`` without touching state."""

        if shares <= 0:
            return 0
        info = self.protocols.get(protocol)
        return self.adapter_for(info).underlying_of(token, shares, self.pair(token, protocol))


__all__ = ["ADAPTERS", "ProtocolDispatcher"]
