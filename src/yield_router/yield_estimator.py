"""Point-in-time, non-compounding yield projection.

The estimator is only an interim read-only view between settlements. Actual
yield, including compounding inside rebasing lending pools, is captured at
withdrawal through the share/balance ratio.
"""

from __future__ import annotations

from dataclasses import dataclass

from .core.constants import BPS_DENOMINATOR, ONE_DAY, SECONDS_PER_YEAR


def estimate_accrued(balance: int, apy_bps: int, last_update: int, now: int) -> int:
    """Simple interest on ``balance`` between ``last_update`` and ``now``.

    ``balance * apy_bps * elapsed // (10_000 * seconds_per_year)``; elapsed
    time before ``last_update`` counts as zero.
    """

    elapsed = now - last_update
    if balance <= 0 or apy_bps <= 0 or elapsed <= 0:
        return 0
    return balance * apy_bps * elapsed // (BPS_DENOMINATOR * SECONDS_PER_YEAR)


def project(balance: int, apy_bps: int, seconds: int) -> int:
    """Yield a balance would earn over ``seconds`` at the nominal rate."""

    return estimate_accrued(balance, apy_bps, 0, seconds)


def daily_and_yearly(balance: int, apy_bps: int) -> tuple[int, int]:
    return project(balance, apy_bps, ONE_DAY), project(balance, apy_bps, SECONDS_PER_YEAR)


@dataclass(frozen=True)
class AccrualCheckpoint:
    """Rate and timestamp from which a pair's estimate accrues."""

    apy_bps: int
    last_settled: int

    def accrued(self, balance: int, now: int) -> int:
        return estimate_accrued(balance, self.apy_bps, self.last_settled, now)


class AccrualBook:
    """Explicit per-(token, protocol) accrual clocks."""

    def __init__(self) -> None:
        self.checkpoints: dict[tuple[str, str], AccrualCheckpoint] = {}

    def get(self, token: str, protocol: str) -> AccrualCheckpoint | None:
        return self.checkpoints.get((token, protocol))

    def open(self, token: str, protocol: str, apy_bps: int, now: int) -> None:
        """Start the clock for a pair that has just become non-empty."""

        self.checkpoints.setdefault((token, protocol), AccrualCheckpoint(apy_bps, now))

    def close(self, token: str, protocol: str) -> None:
        self.checkpoints.pop((token, protocol), None)

    def reset_protocol(self, protocol: str, apy_bps: int, now: int) -> None:
        """Restart every clock of ``protocol`` at a new rate."""

        for key in list(self.checkpoints):
            if key[1] == protocol:
                self.checkpoints[key] = AccrualCheckpoint(apy_bps, now)

    def estimate(self, token: str, protocol: str, balance: int, now: int) -> int:
        checkpoint = self.get(token, protocol)
        if checkpoint is None:
            return 0
        return checkpoint.accrued(balance, now)


__all__ = [
    "estimate_accrued",
    "project",
    "daily_and_yearly",
    "AccrualCheckpoint",
    "AccrualBook",
]
