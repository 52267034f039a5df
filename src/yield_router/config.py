"""TOML configuration for the aggregator.

Defaults live in :func:`default_config`; a TOML file overrides them section by
section. ``[[tokens]]`` and ``[[protocols]]`` arrays bootstrap the registries.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
import tomllib
from pathlib import Path
from typing import Any, cast

from .adapters import FundsGateway
from .aggregator import Aggregator
from .core.clock import Clock
from .core.constants import (
    CLIFF_SECONDS,
    DEFAULT_FAILURE_THRESHOLD,
    EARLY_EXIT_PENALTY_BPS,
    EMERGENCY_WITHDRAW_DELAY,
    MAX_LOCK_DURATION,
    MIN_LOCK_DURATION,
)
from .settlement import (
    CliffPolicy,
    FullSettlementPolicy,
    MaturityGatedPolicy,
    SettlementEngine,
    WithdrawalPolicy,
)

logger = logging.getLogger(__name__)


def default_config() -> dict[str, Any]:
    return {
        "owner": "owner",
        "custodian": "aggregator",
        "settlement": {
            "policy": "full",
            "penalty_bps": EARLY_EXIT_PENALTY_BPS,
            "allow_early_exit": True,
            "cliff_seconds": CLIFF_SECONDS,
            "immediate_penalty_bps": 0,
        },
        "limits": {
            "min_lock_seconds": MIN_LOCK_DURATION,
            "max_lock_seconds": MAX_LOCK_DURATION,
            "rate_limit_seconds": 0,
            "failure_threshold": DEFAULT_FAILURE_THRESHOLD,
            "emergency_delay_seconds": EMERGENCY_WITHDRAW_DELAY,
        },
        "output": {"outdir": None, "show": True, "charts": ["tvl", "apy"]},
        "tokens": [],
        "protocols": [],
    }


def load_config(path: str | Path | None) -> dict[str, Any]:
    """Load configuration from a TOML file and merge with defaults.

    Parameters
    ----------
    path:
        Optional path to a configuration file. When ``None`` or missing, the
        built-in defaults are used.

    Returns
    -------
    dict[str, Any]
        Configuration dictionary with any file overrides applied.
    """

    default = default_config()
    cfg_path = Path(path) if path else None

    if cfg_path and cfg_path.is_file():
        with open(cfg_path, "rb") as f:
            file_cfg = tomllib.load(f)
        for k, v in file_cfg.items():
            if isinstance(v, dict) and k in default and isinstance(default[k], dict):
                cast(dict, default[k]).update(v)
            else:
                default[k] = v
    elif cfg_path:
        logger.warning("Config file not found at %s. Using defaults.", cfg_path)

    return default


def build_policy(cfg: Mapping[str, Any]) -> WithdrawalPolicy:
    """Instantiate the configured withdrawal policy."""

    settlement = cfg.get("settlement", {})
    name = str(settlement.get("policy", "full")).lower()
    if name == "full":
        return FullSettlementPolicy()
    if name == "maturity_gated":
        return MaturityGatedPolicy(
            penalty=int(settlement.get("penalty_bps", EARLY_EXIT_PENALTY_BPS)),
            allow_early_exit=bool(settlement.get("allow_early_exit", True)),
        )
    if name == "cliff":
        return CliffPolicy(
            cliff_seconds=int(settlement.get("cliff_seconds", CLIFF_SECONDS)),
            penalty=int(settlement.get("penalty_bps", 200)),
        )
    raise ValueError(f"Unknown withdrawal policy: {name}")


def build_engine(cfg: Mapping[str, Any]) -> SettlementEngine:
    limits = cfg.get("limits", {})
    return SettlementEngine(
        build_policy(cfg),
        min_lock=int(limits.get("min_lock_seconds", MIN_LOCK_DURATION)),
        max_lock=int(limits.get("max_lock_seconds", MAX_LOCK_DURATION)),
        immediate_penalty_bps=int(cfg.get("settlement", {}).get("immediate_penalty_bps", 0)),
    )


def build_aggregator(
    cfg: Mapping[str, Any],
    gateway: FundsGateway,
    clients: Mapping[str, object] | None = None,
    *,
    clock: Clock | None = None,
) -> Aggregator:
    """Create an :class:`Aggregator` and register the configured tokens/protocols."""

    limits = cfg.get("limits", {})
    aggregator = Aggregator(
        owner=str(cfg.get("owner", "owner")),
        gateway=gateway,
        clients=clients,
        custodian=str(cfg.get("custodian", "aggregator")),
        engine=build_engine(cfg),
        clock=clock,
        rate_limit_seconds=int(limits.get("rate_limit_seconds", 0)),
        failure_threshold=int(limits.get("failure_threshold", DEFAULT_FAILURE_THRESHOLD)),
        emergency_delay=int(limits.get("emergency_delay_seconds", EMERGENCY_WITHDRAW_DELAY)),
    )
    bootstrap(aggregator, cfg)
    return aggregator


def bootstrap(aggregator: Aggregator, cfg: Mapping[str, Any]) -> None:
    owner = aggregator.owner
    for token in cfg.get("tokens", []):
        aggregator.register_token(
            owner,
            str(token["address"]),
            str(token.get("symbol", token["address"])),
            int(token.get("decimals", 18)),
            max_stake_amount=int(token.get("max_stake_amount", 0)),
        )
    for protocol in cfg.get("protocols", []):
        aggregator.register_protocol(
            owner,
            str(protocol["name"]),
            str(protocol["external_ref"]),
            str(protocol["kind"]),
            int(protocol.get("apy_bps", 0)),
            max_tvl=int(protocol.get("max_tvl", 0)),
            verified=bool(protocol.get("verified", False)),
        )


__all__ = [
    "default_config",
    "load_config",
    "build_policy",
    "build_engine",
    "build_aggregator",
    "bootstrap",
]
