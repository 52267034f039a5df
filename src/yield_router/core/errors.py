"""Exception hierarchy for yield_router.

Every failure surfaced by the aggregator derives from :class:`AggregatorError`
so callers can catch broadly, while the concrete subclass tells them which
precondition failed. Configuration and validation errors are raised before any
state is touched; external and invariant errors abort the running unit of work,
which restores the pre-call state.
"""

from __future__ import annotations


class AggregatorError(Exception):
    """Base class for all aggregator failures."""


# -----------------
# Configuration
# -----------------


class ConfigurationError(AggregatorError, ValueError):
    """Unknown, inactive or conflicting token/protocol setup."""


class UnknownTokenError(ConfigurationError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Token not supported: {token}")
        self.token = token


class InactiveTokenError(ConfigurationError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Token inactive: {token}")
        self.token = token


class DuplicateTokenError(ConfigurationError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Token already registered: {token}")
        self.token = token


class UnknownProtocolError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Protocol not found: {name}")
        self.name = name


class InactiveProtocolError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Protocol inactive: {name}")
        self.name = name


class DuplicateProtocolError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Protocol already registered: {name}")
        self.name = name


class ProtocolInUseError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Protocol {name} is referenced by positions and cannot be reconfigured")
        self.name = name


class UnsupportedStrategyError(ConfigurationError):
    def __init__(self, kind: object) -> None:
        super().__init__(f"Unsupported strategy kind: {kind!r}")
        self.kind = kind


# -----------------
# Validation
# -----------------


class ValidationError(AggregatorError, ValueError):
    """Request rejected before any side effect."""


class ZeroAmountError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Amount must be greater than zero")


class InvalidDurationError(ValidationError):
    def __init__(self, duration: int, minimum: int, maximum: int) -> None:
        super().__init__(
            f"Lock duration {duration}s outside allowed range [{minimum}s, {maximum}s]"
        )
        self.duration = duration
        self.minimum = minimum
        self.maximum = maximum


class InsufficientBalanceError(ValidationError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Insufficient balance: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class AmountExceedsMaximumError(ValidationError):
    def __init__(self, amount: int, maximum: int) -> None:
        super().__init__(f"Amount {amount} exceeds maximum {maximum}")
        self.amount = amount
        self.maximum = maximum


class TVLExceededError(ValidationError):
    def __init__(self, name: str, tvl: int, maximum: int) -> None:
        super().__init__(f"Protocol {name} TVL {tvl} would exceed maximum {maximum}")
        self.name = name


class UnknownStakeError(ValidationError):
    def __init__(self, depositor: str, stake_id: int) -> None:
        super().__init__(f"No stake #{stake_id} for {depositor}")
        self.depositor = depositor
        self.stake_id = stake_id


# -----------------
# Stake lifecycle
# -----------------


class StakeStateError(AggregatorError):
    """Stake is not in a state that allows the requested transition."""

    def __init__(self, message: str, stake_id: int) -> None:
        super().__init__(message)
        self.stake_id = stake_id


class StakeScheduledError(StakeStateError):
    def __init__(self, stake_id: int) -> None:
        super().__init__(f"Stake #{stake_id} has not been executed yet", stake_id)


class StakeAlreadyWithdrawnError(StakeStateError):
    def __init__(self, stake_id: int) -> None:
        super().__init__(f"Stake #{stake_id} was already withdrawn", stake_id)


class StakeNotMaturedError(StakeStateError):
    def __init__(self, stake_id: int, end_time: int) -> None:
        super().__init__(f"Stake #{stake_id} matures at {end_time}", stake_id)
        self.end_time = end_time


class StakeNotStartedError(StakeStateError):
    def __init__(self, stake_id: int, start_time: int) -> None:
        super().__init__(f"Stake #{stake_id} starts at {start_time}", stake_id)
        self.start_time = start_time


class StakeNotScheduledError(StakeStateError):
    def __init__(self, stake_id: int) -> None:
        super().__init__(f"Stake #{stake_id} is not scheduled", stake_id)


class StakeTargetInactiveError(StakeStateError):
    """Scheduled stake whose token or protocol was deactivated before it ran."""

    def __init__(self, stake_id: int, target: str) -> None:
        super().__init__(
            f"Stake #{stake_id} cannot be executed: {target} is inactive; cancel it to recover escrow",
            stake_id,
        )
        self.target = target


# -----------------
# Access control
# -----------------


class AccessError(AggregatorError):
    """Caller is not allowed to perform the operation right now."""


class UnauthorizedError(AccessError):
    def __init__(self, caller: str) -> None:
        super().__init__(f"Caller {caller} is not the owner")
        self.caller = caller


class PausedError(AccessError):
    def __init__(self) -> None:
        super().__init__("Aggregator is paused")


class BlacklistedError(AccessError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Address blacklisted: {address}")
        self.address = address


class RateLimitedError(AccessError):
    def __init__(self, address: str, retry_at: int) -> None:
        super().__init__(f"Rate limited: {address} may act again at {retry_at}")
        self.address = address
        self.retry_at = retry_at


class EmergencyWithdrawError(AggregatorError):
    """Emergency withdraw requested twice, not requested, or still timelocked."""


# -----------------
# External / invariants
# -----------------


class ExternalProtocolError(AggregatorError):
    """The external protocol call failed; the whole operation was rolled back."""

    def __init__(self, protocol: str, operation: str, reason: object) -> None:
        super().__init__(f"{protocol}.{operation} failed: {reason}")
        self.protocol = protocol
        self.operation = operation


class InvariantViolationError(AggregatorError, RuntimeError):
    """Accounting would go negative or out of balance; treated as a defect."""


__all__ = [
    "AggregatorError",
    "ConfigurationError",
    "UnknownTokenError",
    "InactiveTokenError",
    "DuplicateTokenError",
    "UnknownProtocolError",
    "InactiveProtocolError",
    "DuplicateProtocolError",
    "ProtocolInUseError",
    "UnsupportedStrategyError",
    "ValidationError",
    "ZeroAmountError",
    "InvalidDurationError",
    "InsufficientBalanceError",
    "AmountExceedsMaximumError",
    "TVLExceededError",
    "UnknownStakeError",
    "StakeStateError",
    "StakeScheduledError",
    "StakeAlreadyWithdrawnError",
    "StakeNotMaturedError",
    "StakeNotStartedError",
    "StakeNotScheduledError",
    "StakeTargetInactiveError",
    "AccessError",
    "UnauthorizedError",
    "PausedError",
    "BlacklistedError",
    "RateLimitedError",
    "EmergencyWithdrawError",
    "ExternalProtocolError",
    "InvariantViolationError",
]
