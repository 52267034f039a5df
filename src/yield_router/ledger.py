"""Per-depositor position ledger.

The ledger only records; it never calls external systems. Callers are
expected to run it inside a unit of work so that a failure after a partial
update is rolled back together with everything else.
"""

from __future__ import annotations

from collections.abc import Iterator
import logging

from .core.errors import (
    InsufficientBalanceError,
    InvariantViolationError,
    UnknownStakeError,
    ZeroAmountError,
)
from .core.models import Position, PositionSlot, TimeLockedStake
from .core.repositories import ProtocolRegistry, TokenRegistry

logger = logging.getLogger(__name__)


def shares_for_amount(total_shares: int, total_balance: int, amount: int) -> int:
    """Proportional redemption, rounded down so the depositor is never over-credited."""

    if total_balance <= 0:
        raise InvariantViolationError("Cannot redeem from an empty balance")
    return total_shares * amount // total_balance


class PositionLedger:
    def __init__(self, tokens: TokenRegistry, protocols: ProtocolRegistry) -> None:
        self.tokens = tokens
        self.protocols = protocols
        self.positions: dict[str, Position] = {}

    # -----------------
    # Mutations
    # -----------------

    def record_deposit(
        self,
        depositor: str,
        token: str,
        protocol: str,
        amount: int,
        shares: int,
        *,
        now: int,
        locked: bool = False,
    ) -> PositionSlot:
        """Credit ``amount``/``shares`` to the depositor and the protocol aggregate."""

        if amount <= 0:
            raise ZeroAmountError()
        if shares < 0:
            raise InvariantViolationError(f"Negative share issue: {shares}")
        self.tokens.require_active(token)
        self.protocols.require_active(protocol)

        position = self.positions.setdefault(depositor, Position())
        slot = position.slot(token, protocol)
        slot.balance += amount
        slot.shares += shares
        if locked:
            slot.locked_balance += amount
            slot.locked_shares += shares
        position.total_deposited += amount
        position.last_action_time = now
        self.protocols.adjust_total(protocol, amount)
        return slot

    def record_withdrawal(
        self,
        depositor: str,
        token: str,
        protocol: str,
        amount: int,
        shares: int,
        *,
        now: int,
        locked: bool = False,
    ) -> PositionSlot:
        """Debit ``amount``/``shares``; works even if token or protocol is inactive."""

        self.tokens.get(token)
        self.protocols.get(protocol)
        position = self.positions.get(depositor)
        slot = position.slots.get((token, protocol)) if position else None
        if slot is None:
            raise InsufficientBalanceError(amount, 0)

        available = slot.locked_balance if locked else slot.flexible_balance
        if amount > available:
            raise InsufficientBalanceError(amount, available)
        available_shares = slot.locked_shares if locked else slot.flexible_shares
        if shares > available_shares or shares < 0:
            raise InvariantViolationError(
                f"{depositor}: redeeming {shares} shares of {token}/{protocol} "
                f"but only {available_shares} recorded"
            )
        if amount > position.total_deposited:
            raise InvariantViolationError(f"{depositor}: total deposited would go negative")

        slot.balance -= amount
        slot.shares -= shares
        if locked:
            slot.locked_balance -= amount
            slot.locked_shares -= shares
        position.total_deposited -= amount
        position.last_action_time = now
        self.protocols.adjust_total(protocol, -amount)
        if slot.is_empty:
            del position.slots[(token, protocol)]
        return slot

    def record_claim(self, depositor: str, amount: int) -> None:
        if amount > 0:
            self.positions.setdefault(depositor, Position()).total_claimed += amount

    def add_stake(self, depositor: str, stake: TimeLockedStake) -> TimeLockedStake:
        position = self.positions.setdefault(depositor, Position())
        position.stakes.append(stake)
        return stake

    def next_stake_id(self, depositor: str) -> int:
        position = self.positions.get(depositor)
        return len(position.stakes) if position else 0

    # -----------------
    # Queries
    # -----------------

    def get_position(self, depositor: str) -> Position:
        return self.positions.get(depositor) or Position()

    def get_slot(self, depositor: str, token: str, protocol: str) -> PositionSlot:
        position = self.positions.get(depositor)
        if position is None:
            return PositionSlot()
        return position.slots.get((token, protocol)) or PositionSlot()

    def get_stake(self, depositor: str, stake_id: int) -> TimeLockedStake:
        position = self.positions.get(depositor)
        if position is None or not 0 <= stake_id < len(position.stakes):
            raise UnknownStakeError(depositor, stake_id)
        return position.stakes[stake_id]

    def get_aggregate_position(self, token: str, protocol: str) -> PositionSlot:
        """Sum of every depositor's slot for the pair."""

        total = PositionSlot()
        for position in self.positions.values():
            slot = position.slots.get((token, protocol))
            if slot is None:
                continue
            total.balance += slot.balance
            total.shares += slot.shares
            total.locked_balance += slot.locked_balance
            total.locked_shares += slot.locked_shares
        return total

    def iter_slots(self) -> Iterator[tuple[str, str, str, PositionSlot]]:
        for depositor, position in self.positions.items():
            for (token, protocol), slot in position.slots.items():
                yield depositor, token, protocol, slot

    def protocol_referenced(self, protocol: str) -> bool:
        for position in self.positions.values():
            if any(p == protocol for _, p in position.slots):
                return True
            if any(s.protocol == protocol for s in position.stakes):
                return True
        return False

    def check_invariants(self, depositor: str) -> None:
        """Raise :class:`InvariantViolationError` if the depositor's books disagree."""

        position = self.get_position(depositor)
        slot_total = sum(slot.balance for slot in position.slots.values())
        if slot_total != position.total_deposited:
            raise InvariantViolationError(
                f"{depositor}: slot balances {slot_total} != total deposited {position.total_deposited}"
            )
        locked: dict[tuple[str, str], tuple[int, int]] = {}
        for stake in position.active_stakes():
            bal, sh = locked.get((stake.token, stake.protocol), (0, 0))
            locked[(stake.token, stake.protocol)] = (bal + stake.amount, sh + stake.shares)
        for key, slot in position.slots.items():
            if (slot.locked_balance, slot.locked_shares) != locked.pop(key, (0, 0)):
                raise InvariantViolationError(f"{depositor}: locked totals out of sync for {key}")
            if slot.flexible_balance < 0 or slot.flexible_shares < 0:
                raise InvariantViolationError(f"{depositor}: negative flexible balance for {key}")
        if locked:
            raise InvariantViolationError(f"{depositor}: active stakes without a slot: {sorted(locked)}")


__all__ = ["PositionLedger", "shares_for_amount"]
