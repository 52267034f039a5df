"""LP-staking and compound-style money-market adapters.

Both treat one share as one unit of underlying unless the client reports an
exchange rate through ``exchange_rate()``.
"""

from __future__ import annotations

from ..core.errors import ExternalProtocolError
from .base import PairState, call_external, exchange_rate, to_shares, to_underlying
from .interfaces import CompoundClient, LPStakingClient


class LPStakingAdapter:
    """``stake`` / ``unstake`` / ``claim`` call shape.

    Rewards claimed on each redemption are pooled in ``pair.pending_rewards``
    and paid out pro rata to the shares being redeemed.
    """

    def __init__(self, name: str, client: LPStakingClient) -> None:
        self.name = name
        self.client = client

    def deposit(self, token: str, amount: int, pair: PairState) -> int:
        rate = exchange_rate(self.name, self.client)
        shares = to_shares(amount, rate)
        if shares <= 0:
            raise ExternalProtocolError(self.name, "stake", "deposit too small to mint a share")
        call_external(self.name, "stake", self.client.stake, amount)
        return shares

    def withdraw(self, token: str, shares: int, pair: PairState) -> int:
        rate = exchange_rate(self.name, self.client)
        amount = to_underlying(shares, rate)
        call_external(self.name, "unstake", self.client.unstake, amount)
        claimed = call_external(self.name, "claim", self.client.claim) or 0
        pair.pending_rewards += int(claimed)
        reward = pair.pending_rewards * shares // pair.shares if pair.shares else 0
        pair.pending_rewards -= reward
        return amount + reward

    def underlying_of(self, token: str, shares: int, pair: PairState) -> int:
        return to_underlying(shares, exchange_rate(self.name, self.client))


class CompoundAdapter:
    """``deposit`` / ``withdraw(shares)`` call shape.

    Shares are whatever ``deposit`` reports as minted. A client that returns
    ``None`` is credited at the exchange rate instead.
    """

    def __init__(self, name: str, client: CompoundClient) -> None:
        self.name = name
        self.client = client

    def deposit(self, token: str, amount: int, pair: PairState) -> int:
        quoted = to_shares(amount, exchange_rate(self.name, self.client))
        if quoted <= 0:
            raise ExternalProtocolError(self.name, "deposit", "deposit too small to mint a share")
        minted = call_external(self.name, "deposit", self.client.deposit, amount)
        if minted is None:
            return quoted
        if not isinstance(minted, int) or isinstance(minted, bool) or minted <= 0:
            raise ExternalProtocolError(self.name, "deposit", f"invalid minted shares {minted!r}")
        return minted

    def withdraw(self, token: str, shares: int, pair: PairState) -> int:
        returned = call_external(self.name, "withdraw", self.client.withdraw, shares)
        if returned is None:
            returned = to_underlying(shares, exchange_rate(self.name, self.client))
        if not isinstance(returned, int) or returned < 0:
            raise ExternalProtocolError(self.name, "withdraw", f"invalid amount {returned!r}")
        return returned

    def underlying_of(self, token: str, shares: int, pair: PairState) -> int:
        return to_underlying(shares, exchange_rate(self.name, self.client))


__all__ = ["LPStakingAdapter", "CompoundAdapter"]
