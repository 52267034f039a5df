"""In-memory registries for supported tokens and protocols."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import replace
import logging

import pandas as pd

from .errors import (
    DuplicateProtocolError,
    DuplicateTokenError,
    InactiveProtocolError,
    InactiveTokenError,
    InvariantViolationError,
    UnknownProtocolError,
    UnknownTokenError,
    ValidationError,
)
from .models import ProtocolInfo, StrategyKind, SupportedToken

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Whitelist of custodied tokens keyed by address, in registration order."""

    def __init__(self, tokens: Iterable[SupportedToken] | None = None) -> None:
        self._tokens: dict[str, SupportedToken] = {}
        for token in tokens or []:
            self._insert(token)

    def _insert(self, token: SupportedToken) -> None:
        if not token.address:
            raise ValidationError("Invalid address")
        if token.address in self._tokens:
            raise DuplicateTokenError(token.address)
        if not 0 <= token.decimals <= 36:
            raise ValidationError(f"Invalid decimals: {token.decimals}")
        self._tokens[token.address] = token

    def add(self, token: SupportedToken) -> SupportedToken:
        self._insert(token)
        logger.info("Registered token %s (%s, %d decimals)", token.symbol, token.address, token.decimals)
        return token

    def get(self, address: str) -> SupportedToken:
        try:
            return self._tokens[address]
        except KeyError:
            raise UnknownTokenError(address) from None

    def require_active(self, address: str) -> SupportedToken:
        token = self.get(address)
        if not token.active:
            raise InactiveTokenError(address)
        return token

    def set_active(self, address: str, active: bool) -> SupportedToken:
        token = replace(self.get(address), active=active)
        self._tokens[address] = token
        logger.info("Token %s active=%s", address, active)
        return token

    def set_max_stake_amount(self, address: str, maximum: int) -> SupportedToken:
        if maximum < 0:
            raise ValidationError("Maximum stake amount cannot be negative")
        token = replace(self.get(address), max_stake_amount=maximum)
        self._tokens[address] = token
        return token

    def snapshot(self) -> dict[str, SupportedToken]:
        return dict(self._tokens)

    def restore(self, state: dict[str, SupportedToken]) -> None:
        self._tokens = dict(state)

    def filter(self, *, active_only: bool = False) -> "TokenRegistry":
        return TokenRegistry(t for t in self._tokens.values() if t.active or not active_only)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([token.to_dict() for token in self._tokens.values()])

    def __contains__(self, address: object) -> bool:
        return address in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[SupportedToken]:
        return iter(self._tokens.values())


class ProtocolRegistry:
    """Whitelist of external yield sources keyed by unique name."""

    def __init__(self, protocols: Iterable[ProtocolInfo] | None = None) -> None:
        self._protocols: dict[str, ProtocolInfo] = {}
        for info in protocols or []:
            self._insert(info)

    def _insert(self, info: ProtocolInfo) -> None:
        if not info.name:
            raise ValidationError("Protocol name required")
        if not info.external_ref:
            raise ValidationError("Invalid address")
        if info.name in self._protocols:
            raise DuplicateProtocolError(info.name)
        if info.apy_bps < 0:
            raise ValidationError(f"Invalid APY: {info.apy_bps}")
        self._protocols[info.name] = info

    def add(self, info: ProtocolInfo) -> ProtocolInfo:
        self._insert(info)
        logger.info(
            "Registered protocol %s (%s, %d bps) at %s",
            info.name,
            info.kind.value,
            info.apy_bps,
            info.external_ref,
        )
        return info

    def get(self, name: str) -> ProtocolInfo:
        try:
            return self._protocols[name]
        except KeyError:
            raise UnknownProtocolError(name) from None

    def require_active(self, name: str) -> ProtocolInfo:
        info = self.get(name)
        if not info.active:
            raise InactiveProtocolError(name)
        return info

    def update(self, name: str, **changes: object) -> ProtocolInfo:
        info = replace(self.get(name), **changes)
        self._protocols[name] = info
        return info

    def set_active(self, name: str, active: bool) -> ProtocolInfo:
        logger.info("Protocol %s active=%s", name, active)
        return self.update(name, active=active)

    def set_apy(self, name: str, apy_bps: int) -> ProtocolInfo:
        if apy_bps < 0:
            raise ValidationError(f"Invalid APY: {apy_bps}")
        logger.info("Protocol %s APY -> %d bps", name, apy_bps)
        return self.update(name, apy_bps=apy_bps)

    def adjust_total(self, name: str, delta: int) -> ProtocolInfo:
        info = self.get(name)
        total = info.total_deposited + delta
        if total < 0:
            raise InvariantViolationError(f"Protocol {name} aggregate deposits would go negative")
        return self.update(name, total_deposited=total)

    def snapshot(self) -> dict[str, ProtocolInfo]:
        return dict(self._protocols)

    def restore(self, state: dict[str, ProtocolInfo]) -> None:
        self._protocols = dict(state)

    def filter(
        self,
        *,
        active_only: bool = False,
        kinds: list[StrategyKind] | None = None,
    ) -> "ProtocolRegistry":
        res: list[ProtocolInfo] = []
        for info in self._protocols.values():
            if active_only and not info.active:
                continue
            if kinds and info.kind not in kinds:
                continue
            res.append(info)
        return ProtocolRegistry(res)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([info.to_dict() for info in self._protocols.values()])

    def __contains__(self, name: object) -> bool:
        return name in self._protocols

    def __len__(self) -> int:
        return len(self._protocols)

    def __iter__(self) -> Iterator[ProtocolInfo]:
        return iter(self._protocols.values())


__all__ = ["TokenRegistry", "ProtocolRegistry"]
