"""File-first CSV reports of registry and ledger state."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pandas as pd

from .aggregator import Aggregator
from .yield_estimator import daily_and_yearly


def _ensure_outdir(outdir: str | Path) -> Path:
    p = Path(outdir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def positions_frame(aggregator: Aggregator) -> pd.DataFrame:
    """One row per depositor/token/protocol slot."""

    now = aggregator.clock.now()
    rows: list[dict[str, object]] = []
    for depositor, token, protocol, slot in aggregator.ledger.iter_slots():
        apy = aggregator.protocols.get(protocol).apy_bps
        daily, yearly = daily_and_yearly(slot.balance, apy)
        rows.append(
            {
                "depositor": depositor,
                "token": token,
                "protocol": protocol,
                "balance": slot.balance,
                "shares": slot.shares,
                "locked_balance": slot.locked_balance,
                "flexible_balance": slot.flexible_balance,
                "estimated_yield": aggregator.accrual.estimate(token, protocol, slot.balance, now),
                "projected_daily": daily,
                "projected_yearly": yearly,
            }
        )
    return pd.DataFrame(rows)


def stakes_frame(aggregator: Aggregator, depositors: Iterable[str] | None = None) -> pd.DataFrame:
    now = aggregator.clock.now()
    rows: list[dict[str, object]] = []
    for depositor in depositors if depositors is not None else aggregator.depositors():
        for stake in aggregator.get_time_locked_stakes(depositor):
            row = stake.to_dict()
            row["depositor"] = depositor
            row["matured"] = stake.is_matured(now)
            row["seconds_to_maturity"] = max(0, stake.end_time - now)
            rows.append(row)
    return pd.DataFrame(rows)


def summary_frame(aggregator: Aggregator, depositors: Iterable[str] | None = None) -> pd.DataFrame:
    rows = []
    for depositor in depositors if depositors is not None else aggregator.depositors():
        summary = aggregator.get_position(depositor)
        rows.append(
            {
                "depositor": depositor,
                "total_deposited": summary.total_deposited,
                "total_claimed": summary.total_claimed,
                "estimated_value": summary.estimated_value,
                "estimated_yield": summary.estimated_yield,
            }
        )
    return pd.DataFrame(rows)


def positions_report(
    aggregator: Aggregator,
    outdir: str | Path,
    *,
    depositors: Iterable[str] | None = None,
) -> dict[str, Path]:
    """Write the aggregator's state as CSVs.

    Writes ``tokens.csv``, ``protocols.csv`` (with the pool share count per
    token), ``positions.csv``, ``stakes.csv`` and ``summary.csv``. Returns a
    mapping of report label to path.
    """

    out = _ensure_outdir(outdir)
    selected = list(depositors) if depositors is not None else aggregator.depositors()
    paths: dict[str, Path] = {}

    protocols = aggregator.protocols.to_dataframe()
    if not protocols.empty:
        pool = pd.DataFrame(
            [
                {"name": protocol, "token": token, "pool_shares": state.shares}
                for (token, protocol), state in aggregator.dispatcher.pairs.items()
            ],
            columns=["name", "token", "pool_shares"],
        )
        protocols = protocols.merge(pool, on="name", how="left")

    frames = {
        "tokens": aggregator.tokens.to_dataframe(),
        "protocols": protocols,
        "positions": positions_frame(aggregator),
        "stakes": stakes_frame(aggregator, selected),
        "summary": summary_frame(aggregator, selected),
    }
    for label, df in frames.items():
        path = out / f"{label}.csv"
        df.to_csv(path, index=False)
        paths[label] = path
    return paths


__all__ = ["positions_frame", "stakes_frame", "summary_frame", "positions_report"]
