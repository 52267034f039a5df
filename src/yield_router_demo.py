from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from yield_router import ManualClock, StrategyKind, Visualizer, build_aggregator, load_config
from yield_router.core.constants import ONE_DAY
from yield_router.reporting import positions_report
from yield_router.simulation import (
    SimulatedCompoundMarket,
    SimulatedLendingPool,
    SimulatedLiquidStaking,
    SimulatedLPStaking,
    TokenBank,
)

logger = logging.getLogger(__name__)


def build_clients(cfg: dict[str, Any], bank: TokenBank) -> dict[str, object]:
    """Create one simulated external system per configured protocol."""

    custodian = str(cfg.get("custodian", "aggregator"))
    default_token = cfg["tokens"][0]["address"] if cfg.get("tokens") else ""
    clients: dict[str, object] = {}
    for protocol in cfg.get("protocols", []):
        ref = str(protocol["external_ref"])
        token = str(protocol.get("token", default_token))
        kind = StrategyKind.parse(protocol["kind"])
        if kind is StrategyKind.LENDING:
            clients[ref] = SimulatedLendingPool(bank, address=ref)
        elif kind is StrategyKind.LIQUID:
            clients[ref] = SimulatedLiquidStaking(bank, token, custodian, address=ref)
        elif kind is StrategyKind.LP_STAKING:
            clients[ref] = SimulatedLPStaking(bank, token, custodian, address=ref)
        else:
            clients[ref] = SimulatedCompoundMarket(bank, token, custodian, address=ref)
    return clients


def main() -> None:
    """Run a two-depositor simulation using configuration from file or environment."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    cfg_file = os.getenv("YIELD_ROUTER_CONFIG") or (sys.argv[1] if len(sys.argv) > 1 else None)
    cfg = load_config(cfg_file)
    if outdir_env := os.getenv("YIELD_ROUTER_OUTDIR"):
        cfg.setdefault("output", {})["outdir"] = outdir_env

    if not cfg.get("tokens") or not cfg.get("protocols"):
        print("Config registers no tokens or protocols; nothing to simulate.")
        return

    clock = ManualClock()
    bank = TokenBank(custodian=str(cfg.get("custodian", "aggregator")))
    clients = build_clients(cfg, bank)
    aggregator = build_aggregator(cfg, bank, clients, clock=clock)

    token = cfg["tokens"][0]
    unit = 10 ** int(token.get("decimals", 18))
    address = str(token["address"])
    lending = next(
        (p for p in cfg["protocols"] if StrategyKind.parse(p["kind"]) is StrategyKind.LENDING),
        cfg["protocols"][0],
    )
    name = str(lending["name"])

    for depositor in ("alice", "bob"):
        bank.mint(depositor, address, 1_000 * unit)

    alice = aggregator.create_time_locked_position("alice", address, 100 * unit, name, 30 * ONE_DAY)
    client = clients[str(lending["external_ref"])]
    clock.advance(ONE_DAY)
    if isinstance(client, SimulatedLendingPool):
        client.accrue(address, 1_000)
    bob = aggregator.create_time_locked_position("bob", address, 300 * unit, name, 30 * ONE_DAY)
    clock.advance(30 * ONE_DAY)

    for depositor in ("alice", "bob"):
        summary = aggregator.get_position(depositor)
        print(
            f"{depositor}: deposited {summary.total_deposited / unit:.4f}, "
            f"estimated yield {summary.estimated_yield / unit:.6f}"
        )

    out = cfg.get("output", {})
    outdir = Path(out["outdir"]) if out.get("outdir") else None
    show = bool(out.get("show", True)) if not outdir else False
    charts = out.get("charts", [])
    protocols_df = aggregator.protocols.to_dataframe()
    if outdir:
        paths = positions_report(aggregator, outdir)
        logger.info("Wrote %d reports to %s", len(paths), outdir)
    if "tvl" in charts:
        Visualizer.bar_protocol_tvl(
            protocols_df,
            decimals=int(token.get("decimals", 18)),
            save_path=str(outdir / "protocol_tvl.png") if outdir else None,
            show=show,
        )
    if "apy" in charts:
        Visualizer.bar_protocol_apy(
            protocols_df,
            save_path=str(outdir / "protocol_apy.png") if outdir else None,
            show=show,
        )

    for depositor, stake_id in (("alice", alice), ("bob", bob)):
        settlement = aggregator.withdraw_position(depositor, stake_id)
        print(
            f"{depositor} withdrew stake #{stake_id}: principal {settlement.principal / unit:.4f}, "
            f"paid {settlement.payout / unit:.6f}, yield {settlement.realized_yield / unit:.6f}"
        )
    aggregator.check_invariants()


if __name__ == "__main__":
    main()
