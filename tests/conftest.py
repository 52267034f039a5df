import sys
from pathlib import Path

import pytest


# Ensure the package is importable without installation when running tests locally
pkg_src = Path(__file__).resolve().parents[1] / "src"
if str(pkg_src) not in sys.path:
    sys.path.insert(0, str(pkg_src))

from yield_router.aggregator import Aggregator  # noqa: E402
from yield_router.core.clock import ManualClock  # noqa: E402
from yield_router.simulation import (  # noqa: E402
    SimulatedCompoundMarket,
    SimulatedLendingPool,
    SimulatedLiquidStaking,
    SimulatedLPStaking,
    TokenBank,
)

UNIT = 10**18
TOKEN = "0xUSDC"
OWNER = "owner"
CUSTODIAN = "aggregator"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def bank() -> TokenBank:
    bank = TokenBank(custodian=CUSTODIAN)
    for depositor in ("alice", "bob", "carol"):
        bank.mint(depositor, TOKEN, 10_000 * UNIT)
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
def aggregator(bank: TokenBank, clients: dict[str, object], clock: ManualClock) -> Aggregator:
    """Aggregator with one token and one protocol of each kind registered."""

    agg = Aggregator(OWNER, bank, clients, custodian=CUSTODIAN, clock=clock)
    agg.register_token(OWNER, TOKEN, "USDC", 18)
    agg.register_protocol(OWNER, "lending", "0xpool", "lending", 500)
    agg.register_protocol(OWNER, "liquid", "0xliquid", "liquid", 400)
    agg.register_protocol(OWNER, "farm", "0xfarm", "lp", 1200)
    agg.register_protocol(OWNER, "market", "0xmarket", "compound", 300)
    return agg
