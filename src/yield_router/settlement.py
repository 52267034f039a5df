"""Time-lock lifecycle and withdrawal settlement.

Deployed variants of the aggregator disagree on early-exit behaviour, so the
rule is a pluggable :class:`WithdrawalPolicy`:

``FullSettlementPolicy``
    Always pays out 100% of what the protocol returned.
``MaturityGatedPolicy``
    Before ``end_time`` either charges ``penalty_bps`` or, with
    ``allow_early_exit=False``, refuses with :class:`StakeNotMaturedError`.
``CliffPolicy``
    Charges ``penalty_bps`` until ``cliff_seconds`` have elapsed since the
    stake started, independent of its own maturity.

Penalties are retained by the pool (custody reserves), never burned.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol

from .core.constants import (
    BPS_DENOMINATOR,
    CLIFF_SECONDS,
    EARLY_EXIT_PENALTY_BPS,
    IMMEDIATE_EXIT_PENALTY_BPS,
    MAX_LOCK_DURATION,
    MIN_LOCK_DURATION,
)
from .core.errors import (
    InvalidDurationError,
    StakeAlreadyWithdrawnError,
    StakeNotMaturedError,
    StakeNotScheduledError,
    StakeNotStartedError,
    StakeScheduledError,
    ValidationError,
)
from .core.models import Settlement, StakeStatus, TimeLockedStake

logger = logging.getLogger(__name__)


class WithdrawalPolicy(Protocol):
    name: str

    def penalty_bps(self, stake: TimeLockedStake, now: int) -> int:
        """Penalty to apply, or raise to refuse the withdrawal."""
        ...


def _check_bps(value: int) -> int:
    if not 0 <= value <= BPS_DENOMINATOR:
        raise ValidationError(f"Penalty must be within 0..{BPS_DENOMINATOR} bps, got {value}")
    return value


@dataclass(frozen=True)
class FullSettlementPolicy:
    name: str = "full"

    def penalty_bps(self, stake: TimeLockedStake, now: int) -> int:
        return 0


@dataclass(frozen=True)
class MaturityGatedPolicy:
    penalty: int = EARLY_EXIT_PENALTY_BPS
    allow_early_exit: bool = True
    name: str = "maturity_gated"

    def __post_init__(self) -> None:
        _check_bps(self.penalty)

    def penalty_bps(self, stake: TimeLockedStake, now: int) -> int:
        if stake.is_matured(now):
            return 0
        if not self.allow_early_exit:
            raise StakeNotMaturedError(stake.stake_id, stake.end_time)
        return self.penalty


@dataclass(frozen=True)
class CliffPolicy:
    cliff_seconds: int = CLIFF_SECONDS
    penalty: int = IMMEDIATE_EXIT_PENALTY_BPS
    name: str = "cliff"

    def __post_init__(self) -> None:
        _check_bps(self.penalty)
        if self.cliff_seconds < 0:
            raise ValidationError("Cliff cannot be negative")

    def penalty_bps(self, stake: TimeLockedStake, now: int) -> int:
        return self.penalty if now - stake.start_time < self.cliff_seconds else 0


def apply_penalty(underlying: int, penalty_bps: int) -> tuple[int, int]:
    """Split ``underlying`` into ``(penalty, payout)``; the penalty rounds down."""

    penalty = underlying * penalty_bps // BPS_DENOMINATOR
    return penalty, underlying - penalty


def realized_yield(underlying: int, principal: int) -> int:
    return max(0, underlying - principal)


class SettlementEngine:
    """Validates lock windows and stake transitions, and computes payouts."""

    def __init__(
        self,
        policy: WithdrawalPolicy | None = None,
        *,
        min_lock: int = MIN_LOCK_DURATION,
        max_lock: int = MAX_LOCK_DURATION,
        immediate_penalty_bps: int = 0,
    ) -> None:
        if min_lock <= 0 or max_lock < min_lock:
            raise ValidationError(f"Invalid lock bounds: [{min_lock}, {max_lock}]")
        self.policy: WithdrawalPolicy = policy or FullSettlementPolicy()
        self.min_lock = min_lock
        self.max_lock = max_lock
        self.immediate_penalty_bps = _check_bps(immediate_penalty_bps)

    def validate_duration(self, duration: int) -> None:
        if not self.min_lock <= duration <= self.max_lock:
            raise InvalidDurationError(duration, self.min_lock, self.max_lock)

    def new_stake(
        self,
        stake_id: int,
        token: str,
        protocol: str,
        amount: int,
        duration: int,
        *,
        now: int,
        start_time: int | None = None,
    ) -> TimeLockedStake:
        self.validate_duration(duration)
        start = now if start_time is None else max(int(start_time), now)
        return TimeLockedStake(
            stake_id=stake_id,
            token=token,
            protocol=protocol,
            amount=amount,
            start_time=start,
            end_time=start + duration,
        )

    @staticmethod
    def due(stake: TimeLockedStake, now: int) -> bool:
        return stake.start_time <= now

    def check_executable(self, stake: TimeLockedStake, now: int) -> None:
        if not stake.is_scheduled:
            raise StakeNotScheduledError(stake.stake_id)
        if not self.due(stake, now):
            raise StakeNotStartedError(stake.stake_id, stake.start_time)

    @staticmethod
    def mark_executed(stake: TimeLockedStake, shares: int) -> None:
        stake.shares = shares
        stake.status = StakeStatus.ACTIVE

    def check_withdrawable(self, stake: TimeLockedStake, now: int) -> int:
        """Return the penalty in bps, or raise if the stake cannot be withdrawn."""

        if stake.status is StakeStatus.SCHEDULED:
            raise StakeScheduledError(stake.stake_id)
        if stake.status is StakeStatus.WITHDRAWN:
            raise StakeAlreadyWithdrawnError(stake.stake_id)
        return self.policy.penalty_bps(stake, now)

    def settle(self, stake: TimeLockedStake, underlying: int, now: int, penalty_bps: int) -> Settlement:
        penalty, payout = apply_penalty(underlying, penalty_bps)
        stake.status = StakeStatus.WITHDRAWN
        settlement = Settlement(
            principal=stake.amount,
            shares=stake.shares,
            underlying=underlying,
            penalty=penalty,
            payout=payout,
            realized_yield=realized_yield(underlying, stake.amount),
            matured=stake.is_matured(now),
        )
        logger.info(
            "Settled stake #%d (%s/%s) under %s policy: principal %d, returned %d, penalty %d",
            stake.stake_id,
            stake.token,
            stake.protocol,
            self.policy.name,
            stake.amount,
            underlying,
            penalty,
        )
        return settlement

    def refund(self, stake: TimeLockedStake) -> Settlement:
        """Close a stake that never ran; the escrowed principal is returned in full."""

        if not stake.is_scheduled:
            raise StakeNotScheduledError(stake.stake_id)
        stake.status = StakeStatus.WITHDRAWN
        logger.info("Refunded scheduled stake #%d (%s/%s): %d", stake.stake_id, stake.token, stake.protocol, stake.amount)
        return Settlement(
            principal=stake.amount,
            shares=0,
            underlying=stake.amount,
            penalty=0,
            payout=stake.amount,
            realized_yield=0,
            matured=False,
        )

    def settle_immediate(self, principal: int, shares: int, underlying: int) -> Settlement:
        penalty, payout = apply_penalty(underlying, self.immediate_penalty_bps)
        return Settlement(
            principal=principal,
            shares=shares,
            underlying=underlying,
            penalty=penalty,
            payout=payout,
            realized_yield=realized_yield(underlying, principal),
            matured=True,
        )


__all__ = [
    "WithdrawalPolicy",
    "FullSettlementPolicy",
    "MaturityGatedPolicy",
    "CliffPolicy",
    "SettlementEngine",
    "apply_penalty",
    "realized_yield",
]
