from __future__ import annotations

import pytest

from yield_router.adapters import ADAPTERS, ProtocolDispatcher, exchange_rate
from yield_router.core import ProtocolInfo, ProtocolRegistry, StrategyKind
from yield_router.core.constants import RATE_PRECISION
from yield_router.core.errors import (
    ConfigurationError,
    ExternalProtocolError,
    InvariantViolationError,
    ZeroAmountError,
)
from yield_router.simulation import (
    SimulatedCompoundMarket,
    SimulatedLendingPool,
    SimulatedLiquidStaking,
    SimulatedLPStaking,
    TokenBank,
)

UNIT = 10**18
TOKEN = "0xUSDC"
CUSTODIAN = "aggregator"


@pytest.fixture
def bank() -> TokenBank:
    bank = TokenBank(CUSTODIAN)
    bank.mint(CUSTODIAN, TOKEN, 10_000 * UNIT)
    return bank


@pytest.fixture
def clients(bank: TokenBank) -> dict[str, object]:
    return {
        "0xpool": SimulatedLendingPool(bank, address="0xpool"),
        "0xliquid": SimulatedLiquidStaking(bank, TOKEN, CUSTODIAN, address="0xliquid"),
        "0xfarm": SimulatedLPStaking(bank, TOKEN, CUSTODIAN, address="0xfarm"),
        "0xmarket": SimulatedCompoundMarket(bank, TOKEN, CUSTODIAN, address="0xmarket"),
    }


@pytest.fixture
def dispatcher(clients: dict[str, object]) -> ProtocolDispatcher:
    protocols = ProtocolRegistry(
        [
            ProtocolInfo("lending", "0xpool", StrategyKind.LENDING, 500),
            ProtocolInfo("liquid", "0xliquid", StrategyKind.LIQUID, 400),
            ProtocolInfo("farm", "0xfarm", StrategyKind.LP_STAKING, 1200),
            ProtocolInfo("market", "0xmarket", StrategyKind.COMPOUND, 300),
            ProtocolInfo("orphan", "0xnowhere", StrategyKind.LENDING, 100),
        ]
    )
    return ProtocolDispatcher(protocols, clients, CUSTODIAN)


def test_every_strategy_kind_has_an_adapter() -> None:
    assert set(ADAPTERS) == set(StrategyKind)


@pytest.mark.parametrize("protocol", ["lending", "liquid", "farm", "market"])
def test_deposit_then_full_withdraw_returns_principal(
    dispatcher: ProtocolDispatcher, bank: TokenBank, protocol: str
) -> None:
    shares = dispatcher.deposit_to_protocol(TOKEN, protocol, 100 * UNIT)

    assert shares == 100 * UNIT
    assert dispatcher.pool_shares(TOKEN, protocol) == shares
    assert bank.balance_of(CUSTODIAN, TOKEN) == 9_900 * UNIT

    returned = dispatcher.withdraw_from_protocol(TOKEN, protocol, shares)
    assert returned == 100 * UNIT
    assert dispatcher.pool_shares(TOKEN, protocol) == 0
    assert bank.balance_of(CUSTODIAN, TOKEN) == 10_000 * UNIT


def test_lending_late_depositor_buys_in_at_current_share_price(
    dispatcher: ProtocolDispatcher, clients: dict[str, object]
) -> None:
    pool = clients["0xpool"]
    assert isinstance(pool, SimulatedLendingPool)

    first = dispatcher.deposit_to_protocol(TOKEN, "lending", 100 * UNIT)
    pool.accrue(TOKEN, 1_000)
    second = dispatcher.deposit_to_protocol(TOKEN, "lending", 300 * UNIT)

    assert second < 300 * UNIT
    assert abs(dispatcher.underlying_of(TOKEN, "lending", first) - 110 * UNIT) <= 10
    assert abs(dispatcher.underlying_of(TOKEN, "lending", second) - 300 * UNIT) <= 10

    early = dispatcher.withdraw_from_protocol(TOKEN, "lending", first)
    late = dispatcher.withdraw_from_protocol(TOKEN, "lending", second)
    assert abs(early - 110 * UNIT) <= 10
    assert abs(late - 300 * UNIT) <= 10
    assert dispatcher.pool_shares(TOKEN, "lending") == 0


def test_pool_shares_grow_with_each_deposit(dispatcher: ProtocolDispatcher) -> None:
    seen = []
    for amount in (10, 20, 30):
        dispatcher.deposit_to_protocol(TOKEN, "market", amount * UNIT)
        seen.append(dispatcher.pool_shares(TOKEN, "market"))
    assert seen == sorted(seen)
    assert seen[-1] == 60 * UNIT


def test_liquid_staking_shares_come_from_the_client(
    dispatcher: ProtocolDispatcher, clients: dict[str, object]
) -> None:
    vault = clients["0xliquid"]
    assert isinstance(vault, SimulatedLiquidStaking)

    dispatcher.deposit_to_protocol(TOKEN, "liquid", 100 * UNIT)
    vault.accrue(1_000)
    shares = dispatcher.deposit_to_protocol(TOKEN, "liquid", 110 * UNIT)

    assert shares == 100 * UNIT
    assert dispatcher.pool_shares(TOKEN, "liquid") == 200 * UNIT


def test_compound_uses_exchange_rate(dispatcher: ProtocolDispatcher, clients: dict[str, object]) -> None:
    market = clients["0xmarket"]
    assert isinstance(market, SimulatedCompoundMarket)
    market.accrue(1_000)

    shares = dispatcher.deposit_to_protocol(TOKEN, "market", 110 * UNIT)
    assert shares == 100 * UNIT
    assert dispatcher.underlying_of(TOKEN, "market", shares) == 110 * UNIT
    assert dispatcher.withdraw_from_protocol(TOKEN, "market", shares) == 110 * UNIT


def test_lp_rewards_are_shared_pro_rata(dispatcher: ProtocolDispatcher, clients: dict[str, object]) -> None:
    farm = clients["0xfarm"]
    assert isinstance(farm, SimulatedLPStaking)

    shares = dispatcher.deposit_to_protocol(TOKEN, "farm", 100 * UNIT)
    farm.add_rewards(10 * UNIT)

    first = dispatcher.withdraw_from_protocol(TOKEN, "farm", shares // 2)
    assert first == 55 * UNIT
    assert dispatcher.pair(TOKEN, "farm").pending_rewards == 5 * UNIT

    second = dispatcher.withdraw_from_protocol(TOKEN, "farm", shares // 2)
    assert second == 55 * UNIT
    assert dispatcher.pair(TOKEN, "farm").pending_rewards == 0


def test_external_failure_is_wrapped_and_leaves_pool_untouched(
    dispatcher: ProtocolDispatcher, clients: dict[str, object]
) -> None:
    pool = clients["0xpool"]
    assert isinstance(pool, SimulatedLendingPool)
    pool.fail_next = True

    with pytest.raises(ExternalProtocolError) as excinfo:
        dispatcher.deposit_to_protocol(TOKEN, "lending", 100 * UNIT)

    assert excinfo.value.protocol == "lending"
    assert excinfo.value.operation == "supply"
    assert dispatcher.pool_shares(TOKEN, "lending") == 0


def test_missing_client_is_a_configuration_error(dispatcher: ProtocolDispatcher) -> None:
    with pytest.raises(ConfigurationError):
        dispatcher.deposit_to_protocol(TOKEN, "orphan", UNIT)


def test_withdraw_guards(dispatcher: ProtocolDispatcher) -> None:
    with pytest.raises(ZeroAmountError):
        dispatcher.deposit_to_protocol(TOKEN, "market", 0)
    dispatcher.deposit_to_protocol(TOKEN, "market", UNIT)
    with pytest.raises(InvariantViolationError):
        dispatcher.withdraw_from_protocol(TOKEN, "market", 2 * UNIT)


class _BrokenRate:
    def exchange_rate(self) -> int:
        return 0


class _NoRate:
    pass


def test_exchange_rate_validation() -> None:
    assert exchange_rate("plain", _NoRate()) == RATE_PRECISION
    with pytest.raises(ExternalProtocolError):
        exchange_rate("broken", _BrokenRate())


class _FeeMarket(SimulatedCompoundMarket):
    """Keeps 1% of every deposit as an entry fee by minting fewer shares."""

    def deposit(self, amount: int) -> int:
        self._maybe_fail("deposit")
        minted = amount * RATE_PRECISION // self.rate * 99 // 100
        self.bank.transfer(self.sender, self.address, self.token, amount)
        self.shares += minted
        return minted


class _SilentMarket(SimulatedCompoundMarket):
    def deposit(self, amount: int) -> None:  # type: ignore[override]
        super().deposit(amount)


class _BogusMarket(SimulatedCompoundMarket):
    def deposit(self, amount: int) -> int:
        super().deposit(amount)
        return 0


def _market_dispatcher(client: SimulatedCompoundMarket) -> ProtocolDispatcher:
    protocols = ProtocolRegistry([ProtocolInfo("market", "0xmarket", StrategyKind.COMPOUND, 300)])
    return ProtocolDispatcher(protocols, {"0xmarket": client}, CUSTODIAN)


def test_compound_records_shares_minted_by_the_market(bank: TokenBank) -> None:
    market = _FeeMarket(bank, TOKEN, CUSTODIAN, address="0xmarket")
    dispatcher = _market_dispatcher(market)

    shares = dispatcher.deposit_to_protocol(TOKEN, "market", 100 * UNIT)

    assert shares == market.shares == 99 * UNIT
    assert dispatcher.pool_shares(TOKEN, "market") == market.shares
    assert dispatcher.withdraw_from_protocol(TOKEN, "market", shares) == 99 * UNIT
    assert market.shares == 0


def test_compound_falls_back_to_exchange_rate_without_a_minted_count(bank: TokenBank) -> None:
    market = _SilentMarket(bank, TOKEN, CUSTODIAN, address="0xmarket")
    market.rate = RATE_PRECISION * 2

    assert _market_dispatcher(market).deposit_to_protocol(TOKEN, "market", 100 * UNIT) == 50 * UNIT


def test_compound_rejects_a_non_positive_minted_count(bank: TokenBank) -> None:
    dispatcher = _market_dispatcher(_BogusMarket(bank, TOKEN, CUSTODIAN, address="0xmarket"))

    with pytest.raises(ExternalProtocolError) as excinfo:
        dispatcher.deposit_to_protocol(TOKEN, "market", 100 * UNIT)
    assert excinfo.value.operation == "deposit"
    assert dispatcher.pool_shares(TOKEN, "market") == 0
