"""Shared helpers for strategy adapters."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any, Protocol, TypeVar

from ..core.constants import RATE_PRECISION
from ..core.errors import ExternalProtocolError
from .interfaces import SupportsExchangeRate

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PairState:
    """Pooled bookkeeping for one (token, protocol) pair across all depositors."""

    shares: int = 0
    pending_rewards: int = 0


class StrategyAdapter(Protocol):
    """Normalises one external call shape into shares in / underlying out."""

    def deposit(self, token: str, amount: int, pair: PairState) -> int: ...

    def withdraw(self, token: str, shares: int, pair: PairState) -> int: ...

    def underlying_of(self, token: str, shares: int, pair: PairState) -> int: ...


def call_external(protocol: str, operation: str, fn: Callable[..., T], *args: Any) -> T:
    """Invoke an external client, re-raising any failure as :class:`ExternalProtocolError`."""

    try:
        return fn(*args)
    except ExternalProtocolError:
        raise
    except Exception as exc:
        logger.warning("External call %s.%s failed: %s", protocol, operation, exc)
        raise ExternalProtocolError(protocol, operation, exc) from exc


def exchange_rate(protocol: str, client: object) -> int:
    """Return the client's reported rate, falling back to 1:1 when it has none."""

    if not isinstance(client, SupportsExchangeRate):
        return RATE_PRECISION
    rate = call_external(protocol, "exchange_rate", client.exchange_rate)
    if not isinstance(rate, int) or rate <= 0:
        raise ExternalProtocolError(protocol, "exchange_rate", f"invalid rate {rate!r}")
    return rate


def to_shares(amount: int, rate: int) -> int:
    return amount * RATE_PRECISION // rate


def to_underlying(shares: int, rate: int) -> int:
    return shares * rate // RATE_PRECISION


__all__ = [
    "PairState",
    "StrategyAdapter",
    "call_external",
    "exchange_rate",
    "to_shares",
    "to_underlying",
]
