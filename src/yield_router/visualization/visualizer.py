"""Matplotlib-based chart helpers for yield_router."""

from __future__ import annotations

import pandas as pd


class Visualizer:
    """Collection of static helpers that turn registry frames into charts."""

    @staticmethod
    def _plt():
        try:
            import matplotlib.pyplot as plt
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(
                "matplotlib is required for visualization. Install via pip."
            ) from exc
        return plt

    @staticmethod
    def _finish(plt, save_path: str | None, show: bool) -> None:
        plt.tight_layout()
        if save_path:
            plt.savefig(save_path, bbox_inches="tight")
        if show:
            plt.show()

    @staticmethod
    def bar_protocol_tvl(
        df: pd.DataFrame,
        title: str = "Deposits per protocol",
        x_col: str = "name",
        y_col: str = "total_deposited",
        *,
        decimals: int = 18,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        if df.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.bar(df[x_col], df[y_col].astype(float) / 10**decimals)
        plt.title(title)
        plt.ylabel("Deposited (tokens)")
        plt.xticks(rotation=45, ha="right")
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def bar_protocol_apy(
        df: pd.DataFrame,
        title: str = "Nominal APY per protocol",
        x_col: str = "name",
        y_col: str = "apy_bps",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        if df.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.bar(df[x_col], df[y_col] / 100.0)  # percentage
        plt.title(title)
        plt.ylabel("APY (%)")
        plt.xticks(rotation=45, ha="right")
        Visualizer._finish(plt, save_path, show)
