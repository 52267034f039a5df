from __future__ import annotations

import pytest

from yield_router.aggregator import Aggregator
from yield_router.core.clock import ManualClock
from yield_router.core.constants import EMERGENCY_WITHDRAW_DELAY, ONE_DAY, SECONDS_PER_YEAR
from yield_router.core.errors import (
    AmountExceedsMaximumError,
    BlacklistedError,
    DuplicateProtocolError,
    EmergencyWithdrawError,
    InactiveTokenError,
    PausedError,
    ProtocolInUseError,
    RateLimitedError,
    StakeNotMaturedError,
    TVLExceededError,
    UnauthorizedError,
    UnknownTokenError,
    UnsupportedStrategyError,
    ValidationError,
    ZeroAmountError,
)
from yield_router.settlement import MaturityGatedPolicy, SettlementEngine
from yield_router.simulation import SimulatedCompoundMarket, SimulatedLiquidStaking, TokenBank

UNIT = 10**18
TOKEN = "0xUSDC"
OWNER = "owner"


def _aggregator(bank: TokenBank, clients: dict[str, object], clock: ManualClock, **kwargs: object) -> Aggregator:
    agg = Aggregator(OWNER, bank, clients, clock=clock, **kwargs)
    agg.register_token(OWNER, TOKEN, "USDC", 18)
    agg.register_protocol(OWNER, "market", "0xmarket", "compound", 300)
    return agg


def test_admin_operations_require_owner(aggregator: Aggregator) -> None:
    with pytest.raises(UnauthorizedError):
        aggregator.register_token("mallory", "0xDAI", "DAI", 18)
    with pytest.raises(UnauthorizedError):
        aggregator.pause("mallory")
    with pytest.raises(UnauthorizedError):
        aggregator.update_apy("mallory", "market", 1)
    with pytest.raises(UnauthorizedError):
        aggregator.request_emergency_withdraw("mallory")
    assert "0xDAI" not in aggregator.tokens


def test_register_protocol_validation(aggregator: Aggregator) -> None:
    with pytest.raises(UnsupportedStrategyError):
        aggregator.register_protocol(OWNER, "options", "0xopt", "options", 100)
    with pytest.raises(DuplicateProtocolError):
        aggregator.register_protocol(OWNER, "market", "0xother", "compound", 100)
    with pytest.raises(ValidationError):
        aggregator.register_protocol(OWNER, "nowhere", "", "lending", 100)

    listing = aggregator.list_protocols()
    assert listing.names == ["lending", "liquid", "farm", "market"]
    assert listing.apys == [500, 400, 1200, 300]
    assert aggregator.list_tokens().symbols == ["USDC"]


def test_deposit_input_validation(aggregator: Aggregator) -> None:
    with pytest.raises(ZeroAmountError):
        aggregator.deposit("alice", TOKEN, 0, "market")
    with pytest.raises(ValidationError):
        aggregator.deposit("alice", "", UNIT, "market")
    with pytest.raises(UnknownTokenError):
        aggregator.deposit("alice", "0xDAI", UNIT, "market")


def test_pause_blocks_deposits_but_not_withdrawals(
    aggregator: Aggregator, bank: TokenBank, clock: ManualClock
) -> None:
    stake_id = aggregator.create_time_locked_position("alice", TOKEN, 100 * UNIT, "market", ONE_DAY)
    aggregator.pause(OWNER)

    with pytest.raises(PausedError):
        aggregator.deposit("bob", TOKEN, UNIT, "market")
    with pytest.raises(PausedError):
        aggregator.create_time_locked_position("bob", TOKEN, UNIT, "market", ONE_DAY)

    clock.advance(ONE_DAY)
    assert aggregator.withdraw_position("alice", stake_id).payout == 100 * UNIT

    aggregator.unpause(OWNER)
    aggregator.deposit("bob", TOKEN, UNIT, "market")
    assert bank.balance_of("bob", TOKEN) == 9_999 * UNIT


def test_blacklist(aggregator: Aggregator) -> None:
    aggregator.blacklist(OWNER, "bob", "sanctioned")
    with pytest.raises(BlacklistedError):
        aggregator.deposit("bob", TOKEN, UNIT, "market")
    with pytest.raises(ValidationError):
        aggregator.blacklist(OWNER, OWNER, "oops")

    aggregator.unblacklist(OWNER, "bob")
    aggregator.deposit("bob", TOKEN, UNIT, "market")


def test_rate_limit_between_deposits(bank: TokenBank, clients: dict[str, object], clock: ManualClock) -> None:
    agg = _aggregator(bank, clients, clock, rate_limit_seconds=60)
    agg.deposit("alice", TOKEN, UNIT, "market")

    with pytest.raises(RateLimitedError) as excinfo:
        agg.deposit("alice", TOKEN, UNIT, "market")
    assert excinfo.value.retry_at == clock.now() + 60

    agg.deposit("bob", TOKEN, UNIT, "market")
    clock.advance(60)
    agg.deposit("alice", TOKEN, UNIT, "market")
    assert agg.get_position("alice").total_deposited == 2 * UNIT


def test_max_stake_amount_and_tvl_cap(aggregator: Aggregator, bank: TokenBank) -> None:
    aggregator.set_token_max_stake(OWNER, TOKEN, 50 * UNIT)
    with pytest.raises(AmountExceedsMaximumError):
        aggregator.deposit("alice", TOKEN, 51 * UNIT, "market")

    aggregator.register_protocol(
        OWNER,
        "capped",
        "0xcapped",
        "compound",
        200,
        max_tvl=80 * UNIT,
        client=SimulatedCompoundMarket(bank, TOKEN, "aggregator", address="0xcapped"),
    )
    aggregator.deposit("alice", TOKEN, 50 * UNIT, "capped")
    with pytest.raises(TVLExceededError):
        aggregator.deposit("bob", TOKEN, 40 * UNIT, "capped")
    aggregator.deposit("bob", TOKEN, 30 * UNIT, "capped")
    assert aggregator.protocols.get("capped").total_deposited == 80 * UNIT


def test_inactive_token_rejects_deposits(aggregator: Aggregator) -> None:
    aggregator.set_token_active(OWNER, TOKEN, False)
    with pytest.raises(InactiveTokenError):
        aggregator.deposit("alice", TOKEN, UNIT, "market")


def test_reconfigure_only_unreferenced_protocols(aggregator: Aggregator, bank: TokenBank) -> None:
    aggregator.deposit("alice", TOKEN, UNIT, "lending")
    with pytest.raises(ProtocolInUseError):
        aggregator.reconfigure_protocol(OWNER, "lending", "0xelsewhere", "compound")

    vault = SimulatedLiquidStaking(bank, TOKEN, "aggregator", address="0xvault")
    info = aggregator.reconfigure_protocol(OWNER, "market", "0xvault", "liquid", client=vault)
    assert info.external_ref == "0xvault"

    aggregator.deposit("bob", TOKEN, 10 * UNIT, "market")
    assert vault.total_assets == 10 * UNIT


def test_update_apy_restarts_estimate(aggregator: Aggregator, clock: ManualClock) -> None:
    aggregator.deposit("alice", TOKEN, 1_000 * UNIT, "market")
    clock.advance(SECONDS_PER_YEAR)
    assert aggregator.get_position("alice").estimated_yield == 30 * UNIT

    aggregator.update_apy(OWNER, "market", 600)
    assert aggregator.get_position("alice").estimated_yield == 0

    clock.advance(SECONDS_PER_YEAR // 2)
    summary = aggregator.get_position("alice")
    assert summary.estimated_yield == 30 * UNIT
    assert summary.estimated_value == 1_030 * UNIT


def test_early_exit_penalty_goes_to_reserves(
    bank: TokenBank, clients: dict[str, object], clock: ManualClock
) -> None:
    agg = _aggregator(bank, clients, clock, engine=SettlementEngine(MaturityGatedPolicy(penalty=500)))
    stake_id = agg.create_time_locked_position("alice", TOKEN, 100 * UNIT, "market", 30 * ONE_DAY)
    clock.advance(ONE_DAY)

    settlement = agg.withdraw_position("alice", stake_id)

    assert settlement.penalty == 5 * UNIT
    assert settlement.payout == 95 * UNIT
    assert settlement.matured is False
    assert agg.reserves(TOKEN) == 5 * UNIT
    assert bank.balance_of("alice", TOKEN) == 9_995 * UNIT
    agg.check_invariants()


def test_strict_maturity_refuses_early_exit(
    bank: TokenBank, clients: dict[str, object], clock: ManualClock
) -> None:
    engine = SettlementEngine(MaturityGatedPolicy(allow_early_exit=False))
    agg = _aggregator(bank, clients, clock, engine=engine)
    stake_id = agg.create_time_locked_position("alice", TOKEN, 100 * UNIT, "market", 30 * ONE_DAY)

    with pytest.raises(StakeNotMaturedError):
        agg.withdraw_position("alice", stake_id)
    clock.advance(30 * ONE_DAY)
    assert agg.withdraw_position("alice", stake_id).payout == 100 * UNIT


def test_emergency_withdraw_sweeps_reserves_after_timelock(
    bank: TokenBank, clients: dict[str, object], clock: ManualClock
) -> None:
    agg = _aggregator(bank, clients, clock, engine=SettlementEngine(MaturityGatedPolicy(penalty=500)))
    stake_id = agg.create_time_locked_position("alice", TOKEN, 100 * UNIT, "market", 30 * ONE_DAY)
    agg.withdraw_position("alice", stake_id)

    with pytest.raises(EmergencyWithdrawError, match="Not requested"):
        agg.execute_emergency_withdraw(OWNER, TOKEN)
    ready = agg.request_emergency_withdraw(OWNER)
    assert ready == clock.now() + EMERGENCY_WITHDRAW_DELAY
    with pytest.raises(EmergencyWithdrawError, match="Already requested"):
        agg.request_emergency_withdraw(OWNER)
    with pytest.raises(EmergencyWithdrawError, match="Timelock not expired"):
        agg.execute_emergency_withdraw(OWNER, TOKEN)

    clock.advance(EMERGENCY_WITHDRAW_DELAY)
    swept = agg.execute_emergency_withdraw(OWNER, TOKEN)

    assert swept == 5 * UNIT
    assert bank.balance_of(OWNER, TOKEN) == 5 * UNIT
    assert agg.reserves(TOKEN) == 0
    assert agg.emergency_requested_at is None
