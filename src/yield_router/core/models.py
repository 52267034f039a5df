"""Data models used throughout yield_router.

Registry entries (:class:`SupportedToken`, :class:`ProtocolInfo`) are immutable
snapshots that the registries replace on update. Ledger entries
(:class:`Position`, :class:`PositionSlot`, :class:`TimeLockedStake`) are
mutable and only ever changed inside an aggregator unit of work.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import pandas as pd


class StrategyKind(str, Enum):
    """Category of external yield source; selects the adapter call shape."""

    LIQUID = "liquid"
    LENDING = "lending"
    LP_STAKING = "lp"
    COMPOUND = "compound"

    @classmethod
    def parse(cls, value: "StrategyKind | str") -> "StrategyKind":
        """Accept enum members, their values and the common spellings."""

        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        aliases = {
            "liquid": cls.LIQUID,
            "liquid_staking": cls.LIQUID,
            "lending": cls.LENDING,
            "lp": cls.LP_STAKING,
            "lp_staking": cls.LP_STAKING,
            "lpstaking": cls.LP_STAKING,
            "compound": cls.COMPOUND,
        }
        try:
            return aliases[key]
        except KeyError:
            raise ValueError(f"Unknown strategy kind: {value!r}") from None


class StakeStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat() if ts else ""


@dataclass(frozen=True)
class SupportedToken:
    """Whitelisted fungible asset."""

    address: str
    symbol: str
    decimals: int
    active: bool = True
    max_stake_amount: int = 0  # 0 means unlimited

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProtocolInfo:
    """Whitelisted external yield source."""

    name: str
    external_ref: str
    kind: StrategyKind
    apy_bps: int
    active: bool = True
    total_deposited: int = 0
    max_tvl: int = 0  # 0 means unlimited
    verified: bool = False
    failure_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["apy_pct"] = self.apy_bps / 100.0
        return data


@dataclass
class TimeLockedStake:
    """A discrete locked deposit. ``shares`` are fixed once executed."""

    stake_id: int
    token: str
    protocol: str
    amount: int
    start_time: int
    end_time: int
    shares: int = 0
    status: StakeStatus = StakeStatus.SCHEDULED

    @property
    def is_active(self) -> bool:
        return self.status is StakeStatus.ACTIVE

    @property
    def is_scheduled(self) -> bool:
        return self.status is StakeStatus.SCHEDULED

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time

    def is_matured(self, now: int) -> bool:
        return now >= self.end_time

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["start_iso"] = _iso(self.start_time)
        data["end_iso"] = _iso(self.end_time)
        return data


@dataclass
class PositionSlot:
    """Balance and shares a depositor holds in one (token, protocol) pair.

    ``locked_*`` is the portion backed by active time-locked stakes; the rest
    is the flexible balance reachable through immediate withdrawals.
    """

    balance: int = 0
    shares: int = 0
    locked_balance: int = 0
    locked_shares: int = 0

    @property
    def flexible_balance(self) -> int:
        return self.balance - self.locked_balance

    @property
    def flexible_shares(self) -> int:
        return self.shares - self.locked_shares

    @property
    def is_empty(self) -> bool:
        return self.balance == 0 and self.shares == 0


@dataclass
class Position:
    """Everything a single depositor owns."""

    total_deposited: int = 0
    total_claimed: int = 0
    last_action_time: int = 0
    slots: dict[tuple[str, str], PositionSlot] = field(default_factory=dict)
    stakes: list[TimeLockedStake] = field(default_factory=list)

    def slot(self, token: str, protocol: str) -> PositionSlot:
        return self.slots.setdefault((token, protocol), PositionSlot())

    def active_stakes(self) -> list[TimeLockedStake]:
        return [s for s in self.stakes if s.is_active]


@dataclass(frozen=True)
class PositionSummary:
    total_deposited: int
    total_claimed: int
    estimated_value: int
    estimated_yield: int


@dataclass(frozen=True)
class SlotSummary:
    balance: int
    shares: int
    estimated_yield: int


@dataclass(frozen=True)
class Settlement:
    """Outcome of a withdrawal.

    ``realized_yield`` is floored at zero; a loss shows up only as
    ``underlying < principal``.
    """

    principal: int
    shares: int
    underlying: int
    penalty: int
    payout: int
    realized_yield: int
    matured: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProtocolListing:
    names: list[str]
    apys: list[int]
    active: list[bool]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({"name": self.names, "apy_bps": self.apys, "active": self.active})


@dataclass(frozen=True)
class TokenListing:
    addresses: list[str]
    symbols: list[str]
    decimals: list[int]
    active: list[bool]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "address": self.addresses,
                "symbol": self.symbols,
                "decimals": self.decimals,
                "active": self.active,
            }
        )


__all__ = [
    "StrategyKind",
    "StakeStatus",
    "SupportedToken",
    "ProtocolInfo",
    "TimeLockedStake",
    "PositionSlot",
    "Position",
    "PositionSummary",
    "SlotSummary",
    "Settlement",
    "ProtocolListing",
    "TokenListing",
]
