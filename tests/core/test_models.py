import pytest

from yield_router.core import (
    PositionSlot,
    ProtocolInfo,
    ProtocolListing,
    StakeStatus,
    StrategyKind,
    TimeLockedStake,
    TokenListing,
)
from yield_router.core.clock import ManualClock


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("liquid", StrategyKind.LIQUID),
        ("liquid_staking", StrategyKind.LIQUID),
        ("Lending", StrategyKind.LENDING),
        ("LPStaking", StrategyKind.LP_STAKING),
        ("lp-staking", StrategyKind.LP_STAKING),
        ("compound", StrategyKind.COMPOUND),
        (StrategyKind.COMPOUND, StrategyKind.COMPOUND),
    ],
)
def test_strategy_kind_parse(raw: object, expected: StrategyKind) -> None:
    assert StrategyKind.parse(raw) is expected


def test_strategy_kind_parse_rejects_unknown() -> None:
    with pytest.raises(ValueError):
        StrategyKind.parse("options")


def test_protocol_to_dict_flattens_kind() -> None:
    info = ProtocolInfo("aave", "0xa", StrategyKind.LENDING, 525)
    data = info.to_dict()
    assert data["kind"] == "lending"
    assert data["apy_pct"] == pytest.approx(5.25)
    assert data["failure_count"] == 0


def test_stake_lifecycle_properties() -> None:
    stake = TimeLockedStake(0, "0x1", "aave", 100, start_time=1_000, end_time=1_000 + 86_400)
    assert stake.is_scheduled and not stake.is_active
    assert stake.duration == 86_400
    assert not stake.is_matured(86_000)
    assert stake.is_matured(87_400)

    stake.status = StakeStatus.ACTIVE
    data = stake.to_dict()
    assert data["status"] == "active"
    assert data["start_iso"].startswith("1970-01-01")


def test_slot_flexible_portion() -> None:
    slot = PositionSlot(balance=300, shares=280, locked_balance=100, locked_shares=90)
    assert slot.flexible_balance == 200
    assert slot.flexible_shares == 190
    assert not slot.is_empty
    assert PositionSlot().is_empty


def test_listings_to_dataframe() -> None:
    protocols = ProtocolListing(names=["a", "b"], apys=[100, 200], active=[True, False]).to_dataframe()
    tokens = TokenListing(addresses=["0x1"], symbols=["USDC"], decimals=[6], active=[True]).to_dataframe()
    assert list(protocols.columns) == ["name", "apy_bps", "active"]
    assert list(tokens.columns) == ["address", "symbol", "decimals", "active"]


def test_manual_clock() -> None:
    clock = ManualClock(start=10)
    assert clock.advance(5) == 15
    clock.set(100)
    assert clock.now() == 100
    with pytest.raises(ValueError):
        clock.advance(-1)
