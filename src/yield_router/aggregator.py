"""Aggregator facade: the operations exposed to admin and depositor tooling.

Every public mutation runs as a single unit of work. The in-process state is
snapshotted on entry; if anything raises, the snapshot is restored, funds
already pulled from the depositor are pushed back, and the exception reaches
the caller unchanged. Calls are serialized by one re-entrant lock.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
import copy
from dataclasses import dataclass, field, replace
import logging
import threading

from .adapters import FundsGateway, ProtocolDispatcher
from .core.clock import Clock, SystemClock
from .core.constants import DEFAULT_FAILURE_THRESHOLD, EMERGENCY_WITHDRAW_DELAY
from .core.errors import (
    AmountExceedsMaximumError,
    BlacklistedError,
    EmergencyWithdrawError,
    ExternalProtocolError,
    InsufficientBalanceError,
    InvariantViolationError,
    PausedError,
    ProtocolInUseError,
    RateLimitedError,
    StakeTargetInactiveError,
    TVLExceededError,
    UnauthorizedError,
    UnsupportedStrategyError,
    ValidationError,
    ZeroAmountError,
)
from .core.models import (
    PositionSummary,
    ProtocolInfo,
    ProtocolListing,
    Settlement,
    SlotSummary,
    StrategyKind,
    SupportedToken,
    TimeLockedStake,
    TokenListing,
)
from .core.repositories import ProtocolRegistry, TokenRegistry
from .ledger import PositionLedger, shares_for_amount
from .settlement import SettlementEngine
from .yield_estimator import AccrualBook

logger = logging.getLogger(__name__)


@dataclass
class Custody:
    """Funds held by the aggregator outside any protocol, per token."""

    escrow: dict[str, int] = field(default_factory=dict)  # scheduled stakes
    reserves: dict[str, int] = field(default_factory=dict)  # retained penalties

    def add(self, bucket: dict[str, int], token: str, amount: int) -> None:
        bucket[token] = bucket.get(token, 0) + amount

    def take(self, bucket: dict[str, int], token: str, amount: int) -> None:
        held = bucket.get(token, 0)
        if amount > held:
            raise InvariantViolationError(f"Custody for {token} holds {held}, cannot release {amount}")
        bucket[token] = held - amount


class Aggregator:
    """Custodial router between depositors and external yield protocols."""

    def __init__(
        self,
        owner: str,
        gateway: FundsGateway,
        clients: Mapping[str, object] | None = None,
        *,
        custodian: str = "aggregator",
        engine: SettlementEngine | None = None,
        clock: Clock | None = None,
        rate_limit_seconds: int = 0,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        emergency_delay: int = EMERGENCY_WITHDRAW_DELAY,
    ) -> None:
        self.owner = owner
        self.gateway = gateway
        self.custodian = custodian
        self.clock: Clock = clock or SystemClock()
        self.engine = engine or SettlementEngine()
        self.rate_limit_seconds = rate_limit_seconds
        self.failure_threshold = failure_threshold
        self.emergency_delay = emergency_delay

        self.tokens = TokenRegistry()
        self.protocols = ProtocolRegistry()
        self.ledger = PositionLedger(self.tokens, self.protocols)
        self.dispatcher = ProtocolDispatcher(self.protocols, clients or {}, custodian)
        self.accrual = AccrualBook()
        self.custody = Custody()

        self.paused = False
        self.blacklisted: dict[str, str] = {}
        self.last_deposit_at: dict[str, int] = {}
        self.emergency_requested_at: int | None = None

        self._lock = threading.RLock()

    # -----------------
    # Unit of work
    # -----------------

    def _snapshot(self) -> tuple[object, ...]:
        return (
            self.tokens.snapshot(),
            self.protocols.snapshot(),
            copy.deepcopy(self.ledger.positions),
            copy.deepcopy(self.dispatcher.pairs),
            dict(self.accrual.checkpoints),
            copy.deepcopy(self.custody),
            self.paused,
            dict(self.blacklisted),
            dict(self.last_deposit_at),
            self.emergency_requested_at,
        )

    def _restore(self, snapshot: tuple[object, ...]) -> None:
        (
            tokens,
            protocols,
            self.ledger.positions,
            self.dispatcher.pairs,
            self.accrual.checkpoints,
            self.custody,
            self.paused,
            self.blacklisted,
            self.last_deposit_at,
            self.emergency_requested_at,
        ) = snapshot
        self.tokens.restore(tokens)
        self.protocols.restore(protocols)

    @contextmanager
    def _unit_of_work(self, label: str) -> Iterator[list[Callable[[], None]]]:
        with self._lock:
            snapshot = self._snapshot()
            compensations: list[Callable[[], None]] = []
            try:
                yield compensations
            except Exception as exc:
                self._restore(snapshot)
                for undo in reversed(compensations):
                    undo()
                logger.debug("%s rolled back: %s", label, exc)
                if isinstance(exc, ExternalProtocolError):
                    self._record_failure(exc.protocol)
                raise

    def _record_failure(self, protocol: str) -> None:
        if protocol not in self.protocols:
            return
        info = self.protocols.get(protocol)
        count = info.failure_count + 1
        info = self.protocols.update(protocol, failure_count=count)
        if self.failure_threshold and count >= self.failure_threshold and info.active:
            self.protocols.set_active(protocol, False)
            logger.warning("Circuit breaker: %s disabled after %d consecutive failures", protocol, count)

    def _record_success(self, protocol: str) -> None:
        if self.protocols.get(protocol).failure_count:
            self.protocols.update(protocol, failure_count=0)

    # -----------------
    # Guards
    # -----------------

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise UnauthorizedError(caller)

    def _require_can_deposit(self, depositor: str, now: int) -> None:
        if self.paused:
            raise PausedError()
        if depositor in self.blacklisted:
            raise BlacklistedError(depositor)
        if self.rate_limit_seconds:
            last = self.last_deposit_at.get(depositor)
            if last is not None and now < last + self.rate_limit_seconds:
                raise RateLimitedError(depositor, last + self.rate_limit_seconds)

    def _validate_deposit(
        self, depositor: str, token: str, amount: int, protocol: str, now: int
    ) -> tuple[SupportedToken, ProtocolInfo]:
        if not token:
            raise ValidationError("Invalid address")
        if amount <= 0:
            raise ZeroAmountError()
        self._require_can_deposit(depositor, now)
        token_info = self.tokens.require_active(token)
        info = self.protocols.require_active(protocol)
        if token_info.max_stake_amount and amount > token_info.max_stake_amount:
            raise AmountExceedsMaximumError(amount, token_info.max_stake_amount)
        if info.max_tvl and info.total_deposited + amount > info.max_tvl:
            raise TVLExceededError(protocol, info.total_deposited + amount, info.max_tvl)
        return token_info, info

    def _pull(self, compensations: list[Callable[[], None]], depositor: str, token: str, amount: int) -> None:
        self.gateway.pull(depositor, token, amount)
        compensations.append(lambda: self.gateway.push(depositor, token, amount))

    # -----------------
    # Internal flows
    # -----------------

    def _forward(self, depositor: str, token: str, protocol: str, amount: int, now: int, *, locked: bool) -> int:
        shares = self.dispatcher.deposit_to_protocol(token, protocol, amount)
        self.ledger.record_deposit(depositor, token, protocol, amount, shares, now=now, locked=locked)
        self.accrual.open(token, protocol, self.protocols.get(protocol).apy_bps, now)
        self._record_success(protocol)
        return shares

    def _redeem(self, token: str, protocol: str, shares: int) -> int:
        underlying = self.dispatcher.withdraw_from_protocol(token, protocol, shares)
        self._record_success(protocol)
        return underlying

    def _release(self, depositor: str, token: str, protocol: str, principal: int, settlement: Settlement) -> None:
        if settlement.penalty:
            self.custody.add(self.custody.reserves, token, settlement.penalty)
        self.ledger.record_claim(depositor, max(0, settlement.payout - principal))
        if self.ledger.get_aggregate_position(token, protocol).balance == 0:
            self.accrual.close(token, protocol)
        if settlement.payout:
            self.gateway.push(depositor, token, settlement.payout)

    def _inactive_target(self, stake: TimeLockedStake) -> str | None:
        if not self.tokens.get(stake.token).active:
            return f"token {stake.token}"
        if not self.protocols.get(stake.protocol).active:
            return f"protocol {stake.protocol}"
        return None

    def _refund(self, depositor: str, stake: TimeLockedStake) -> Settlement:
        settlement = self.engine.refund(stake)
        self.custody.take(self.custody.escrow, stake.token, stake.amount)
        self.gateway.push(depositor, stake.token, stake.amount)
        return settlement

    # -----------------
    # Token & protocol administration
    # -----------------

    def register_token(
        self, caller: str, address: str, symbol: str, decimals: int, *, max_stake_amount: int = 0
    ) -> SupportedToken:
        with self._unit_of_work("register_token"):
            self._require_owner(caller)
            return self.tokens.add(
                SupportedToken(address, symbol, int(decimals), True, int(max_stake_amount))
            )

    def set_token_active(self, caller: str, address: str, active: bool) -> SupportedToken:
        with self._unit_of_work("set_token_active"):
            self._require_owner(caller)
            return self.tokens.set_active(address, active)

    def set_token_max_stake(self, caller: str, address: str, maximum: int) -> SupportedToken:
        with self._unit_of_work("set_token_max_stake"):
            self._require_owner(caller)
            return self.tokens.set_max_stake_amount(address, maximum)

    def register_protocol(
        self,
        caller: str,
        name: str,
        external_ref: str,
        kind: StrategyKind | str,
        apy_bps: int,
        *,
        max_tvl: int = 0,
        verified: bool = False,
        client: object | None = None,
    ) -> ProtocolInfo:
        with self._unit_of_work("register_protocol"):
            self._require_owner(caller)
            try:
                parsed = StrategyKind.parse(kind)
            except ValueError:
                raise UnsupportedStrategyError(kind) from None
            info = self.protocols.add(
                ProtocolInfo(
                    name=name,
                    external_ref=external_ref,
                    kind=parsed,
                    apy_bps=int(apy_bps),
                    max_tvl=int(max_tvl),
                    verified=verified,
                )
            )
            if client is not None:
                self.dispatcher.register_client(external_ref, client)
            return info

    def set_protocol_active(self, caller: str, name: str, active: bool) -> ProtocolInfo:
        with self._unit_of_work("set_protocol_active"):
            self._require_owner(caller)
            info = self.protocols.set_active(name, active)
            if active and info.failure_count:
                info = self.protocols.update(name, failure_count=0)
            return info

    def update_apy(self, caller: str, name: str, apy_bps: int) -> ProtocolInfo:
        with self._unit_of_work("update_apy"):
            self._require_owner(caller)
            info = self.protocols.set_apy(name, int(apy_bps))
            self.accrual.reset_protocol(name, info.apy_bps, self.clock.now())
            return info

    def reconfigure_protocol(
        self,
        caller: str,
        name: str,
        external_ref: str,
        kind: StrategyKind | str,
        *,
        client: object | None = None,
    ) -> ProtocolInfo:
        """Change a protocol's target; refused once any position references it."""

        with self._unit_of_work("reconfigure_protocol"):
            self._require_owner(caller)
            self.protocols.get(name)
            if self.ledger.protocol_referenced(name) or any(
                p == name and state.shares for (_, p), state in self.dispatcher.pairs.items()
            ):
                raise ProtocolInUseError(name)
            try:
                parsed = StrategyKind.parse(kind)
            except ValueError:
                raise UnsupportedStrategyError(kind) from None
            info = self.protocols.update(name, external_ref=external_ref, kind=parsed)
            if client is not None:
                self.dispatcher.register_client(external_ref, client)
            self.dispatcher.invalidate(name)
            logger.info("Protocol %s reconfigured to %s at %s", name, parsed.value, external_ref)
            return info

    # -----------------
    # Safety controls
    # -----------------

    def pause(self, caller: str) -> None:
        with self._unit_of_work("pause"):
            self._require_owner(caller)
            self.paused = True
            logger.warning("Aggregator paused by %s", caller)

    def unpause(self, caller: str) -> None:
        with self._unit_of_work("unpause"):
            self._require_owner(caller)
            self.paused = False
            logger.info("Aggregator unpaused by %s", caller)

    def blacklist(self, caller: str, address: str, reason: str = "") -> None:
        with self._unit_of_work("blacklist"):
            self._require_owner(caller)
            if address == self.owner:
                raise ValidationError("Cannot blacklist owner")
            self.blacklisted[address] = reason
            logger.warning("Blacklisted %s: %s", address, reason)

    def unblacklist(self, caller: str, address: str) -> None:
        with self._unit_of_work("unblacklist"):
            self._require_owner(caller)
            self.blacklisted.pop(address, None)

    def request_emergency_withdraw(self, caller: str) -> int:
        """Start the emergency timelock; returns the earliest execution time."""

        with self._unit_of_work("request_emergency_withdraw"):
            self._require_owner(caller)
            if self.emergency_requested_at is not None:
                raise EmergencyWithdrawError("Already requested")
            self.emergency_requested_at = self.clock.now()
            logger.warning("Emergency withdraw requested by %s", caller)
            return self.emergency_requested_at + self.emergency_delay

    def execute_emergency_withdraw(self, caller: str, token: str) -> int:
        """Sweep retained reserves of ``token`` to the owner once the timelock expired."""

        with self._unit_of_work("execute_emergency_withdraw"):
            self._require_owner(caller)
            if self.emergency_requested_at is None:
                raise EmergencyWithdrawError("Not requested")
            if self.clock.now() < self.emergency_requested_at + self.emergency_delay:
                raise EmergencyWithdrawError("Timelock not expired")
            self.tokens.get(token)
            amount = self.custody.reserves.get(token, 0)
            if amount:
                self.custody.take(self.custody.reserves, token, amount)
                self.gateway.push(self.owner, token, amount)
            self.emergency_requested_at = None
            logger.warning("Emergency withdraw swept %d %s to %s", amount, token, self.owner)
            return amount

    # -----------------
    # Depositor operations
    # -----------------

    def deposit(self, depositor: str, token: str, amount: int, protocol: str) -> int:
        """Flexible (non-locked) deposit; returns shares issued."""

        with self._unit_of_work("deposit") as compensations:
            now = self.clock.now()
            self._validate_deposit(depositor, token, amount, protocol, now)
            self._pull(compensations, depositor, token, amount)
            shares = self._forward(depositor, token, protocol, amount, now, locked=False)
            self.last_deposit_at[depositor] = now
            return shares

    def create_time_locked_position(
        self,
        depositor: str,
        token: str,
        amount: int,
        protocol: str,
        duration_seconds: int,
        *,
        start_time: int | None = None,
    ) -> int:
        """Lock ``amount`` for ``duration_seconds``; returns the stake id.

        With ``start_time`` in the future the funds are held in escrow and the
        stake stays scheduled until :meth:`execute_scheduled` runs.
        """

        with self._unit_of_work("create_time_locked_position") as compensations:
            now = self.clock.now()
            self._validate_deposit(depositor, token, amount, protocol, now)
            stake = self.engine.new_stake(
                self.ledger.next_stake_id(depositor),
                token,
                protocol,
                amount,
                int(duration_seconds),
                now=now,
                start_time=start_time,
            )
            self._pull(compensations, depositor, token, amount)
            self.ledger.add_stake(depositor, stake)
            if self.engine.due(stake, now):
                shares = self._forward(depositor, token, protocol, amount, now, locked=True)
                self.engine.mark_executed(stake, shares)
            else:
                self.custody.add(self.custody.escrow, token, amount)
                logger.info(
                    "Scheduled stake #%d for %s: %d %s into %s at %d",
                    stake.stake_id,
                    depositor,
                    amount,
                    token,
                    protocol,
                    stake.start_time,
                )
            self.last_deposit_at[depositor] = now
            return stake.stake_id

    def execute_scheduled(self, caller: str, depositor: str, stake_id: int) -> int:
        """Forward a due scheduled stake into its protocol; callable by anyone."""

        with self._unit_of_work("execute_scheduled"):
            now = self.clock.now()
            if self.paused:
                raise PausedError()
            stake = self.ledger.get_stake(depositor, stake_id)
            self.engine.check_executable(stake, now)
            inactive = self._inactive_target(stake)
            if inactive:
                raise StakeTargetInactiveError(stake_id, inactive)
            self.custody.take(self.custody.escrow, stake.token, stake.amount)
            shares = self._forward(depositor, stake.token, stake.protocol, stake.amount, now, locked=True)
            self.engine.mark_executed(stake, shares)
            logger.info("Stake #%d of %s executed by %s", stake_id, depositor, caller)
            return shares

    def cancel_scheduled(self, depositor: str, stake_id: int) -> Settlement:
        """Refund a stake that has not been executed yet; allowed while paused."""

        with self._unit_of_work("cancel_scheduled"):
            stake = self.ledger.get_stake(depositor, stake_id)
            return self._refund(depositor, stake)

    def withdraw_position(self, depositor: str, stake_id: int) -> Settlement:
        """Settle an active stake.

        A scheduled stake whose token or protocol has been deactivated can no
        longer execute, so it is refunded from escrow instead.
        """

        with self._unit_of_work("withdraw_position"):
            now = self.clock.now()
            stake = self.ledger.get_stake(depositor, stake_id)
            if stake.is_scheduled and self._inactive_target(stake):
                return self._refund(depositor, stake)
            penalty_bps = self.engine.check_withdrawable(stake, now)
            underlying = self._redeem(stake.token, stake.protocol, stake.shares)
            self.ledger.record_withdrawal(
                depositor, stake.token, stake.protocol, stake.amount, stake.shares, now=now, locked=True
            )
            settlement = self.engine.settle(stake, underlying, now, penalty_bps)
            self._release(depositor, stake.token, stake.protocol, stake.amount, settlement)
            return settlement

    def withdraw_immediate(self, depositor: str, token: str, amount: int, protocol: str) -> Settlement:
        """Withdraw from the flexible balance, redeeming shares proportionally."""

        with self._unit_of_work("withdraw_immediate"):
            if amount <= 0:
                raise ZeroAmountError()
            now = self.clock.now()
            slot = self.ledger.get_slot(depositor, token, protocol)
            available = slot.flexible_balance
            if amount > available:
                raise InsufficientBalanceError(amount, available)
            shares = shares_for_amount(slot.flexible_shares, available, amount)
            if shares == 0:
                raise ValidationError(f"Amount {amount} too small to redeem a share")
            underlying = self._redeem(token, protocol, shares)
            self.ledger.record_withdrawal(depositor, token, protocol, amount, shares, now=now)
            settlement = self.engine.settle_immediate(amount, shares, underlying)
            self._release(depositor, token, protocol, amount, settlement)
            logger.info(
                "Immediate withdrawal for %s: %d %s from %s, paid %d",
                depositor,
                amount,
                token,
                protocol,
                settlement.payout,
            )
            return settlement

    # -----------------
    # Views
    # -----------------
    # Views read under the same lock as units of work.

    def get_position(self, depositor: str) -> PositionSummary:
        with self._lock:
            now = self.clock.now()
            position = self.ledger.get_position(depositor)
            estimated = sum(
                self.accrual.estimate(token, protocol, slot.balance, now)
                for (token, protocol), slot in position.slots.items()
            )
            return PositionSummary(
                total_deposited=position.total_deposited,
                total_claimed=position.total_claimed,
                estimated_value=position.total_deposited + estimated,
                estimated_yield=estimated,
            )

    def get_token_protocol_position(self, depositor: str, token: str, protocol: str) -> SlotSummary:
        with self._lock:
            slot = self.ledger.get_slot(depositor, token, protocol)
            return SlotSummary(
                balance=slot.balance,
                shares=slot.shares,
                estimated_yield=self.accrual.estimate(token, protocol, slot.balance, self.clock.now()),
            )

    def get_time_locked_stakes(self, depositor: str) -> list[TimeLockedStake]:
        with self._lock:
            return [replace(stake) for stake in self.ledger.get_position(depositor).stakes]

    def is_matured(self, depositor: str, stake_id: int) -> bool:
        with self._lock:
            return self.ledger.get_stake(depositor, stake_id).is_matured(self.clock.now())

    def list_protocols(self) -> ProtocolListing:
        with self._lock:
            infos = list(self.protocols)
        return ProtocolListing(
            names=[p.name for p in infos],
            apys=[p.apy_bps for p in infos],
            active=[p.active for p in infos],
        )

    def list_tokens(self) -> TokenListing:
        with self._lock:
            tokens = list(self.tokens)
        return TokenListing(
            addresses=[t.address for t in tokens],
            symbols=[t.symbol for t in tokens],
            decimals=[t.decimals for t in tokens],
            active=[t.active for t in tokens],
        )

    def pool_shares(self, token: str, protocol: str) -> int:
        with self._lock:
            return self.dispatcher.pool_shares(token, protocol)

    def underlying_of(self, depositor: str, token: str, protocol: str) -> int:
        """Current redeemable value of the depositor's shares in a pair."""

        with self._lock:
            slot = self.ledger.get_slot(depositor, token, protocol)
            return self.dispatcher.underlying_of(token, protocol, slot.shares)

    def reserves(self, token: str) -> int:
        with self._lock:
            return self.custody.reserves.get(token, 0)

    def depositors(self) -> list[str]:
        with self._lock:
            return list(self.ledger.positions)

    def check_invariants(self) -> None:
        """Raise :class:`InvariantViolationError` if any cross-entity invariant is broken."""

        with self._lock:
            for depositor in self.ledger.positions:
                self.ledger.check_invariants(depositor)
            for (token, protocol), state in self.dispatcher.pairs.items():
                recorded = self.ledger.get_aggregate_position(token, protocol).shares
                if recorded != state.shares:
                    raise InvariantViolationError(
                        f"{token}/{protocol}: depositor shares {recorded} != pool shares {state.shares}"
                    )


__all__ = ["Aggregator", "Custody"]
