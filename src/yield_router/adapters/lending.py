"""Lending adapter for pools that issue a rebasing receipt asset.

Shares are never requested from the lending pool. The adapter samples the
custodian's receipt balance around each ``supply`` call and treats the delta
as the underlying actually credited. Interest that accrues passively to the
pooled receipt balance is therefore split by share count:

* the first deposit into an empty pair mints ``delta`` shares;
* later deposits mint ``delta * pool_shares // balance_before`` shares, so a
  newcomer buys in at the current share price rather than diluting earlier
  depositors' accrued interest;
* a redemption of ``shares`` withdraws ``held * shares // pool_shares``.

Both divisions floor, which keeps the pool solvent at the cost of dust.
"""

from __future__ import annotations

import logging

from ..core.errors import ExternalProtocolError, InvariantViolationError
from .base import PairState, call_external
from .interfaces import LendingPoolClient, ReceiptToken

logger = logging.getLogger(__name__)


class LendingAdapter:
    """Supply/withdraw against a lending pool on behalf of ``custodian``."""

    def __init__(self, name: str, client: LendingPoolClient, custodian: str) -> None:
        self.name = name
        self.client = client
        self.custodian = custodian

    def _receipt(self, token: str) -> ReceiptToken:
        return call_external(self.name, "receipt_token", self.client.receipt_token, token)

    def held_balance(self, token: str) -> int:
        receipt = self._receipt(token)
        return call_external(self.name, "balance_of", receipt.balance_of, self.custodian)

    def deposit(self, token: str, amount: int, pair: PairState) -> int:
        before = self.held_balance(token)
        call_external(self.name, "supply", self.client.supply, token, amount, self.custodian)
        after = self.held_balance(token)

        delta = after - before
        if delta <= 0:
            raise ExternalProtocolError(self.name, "supply", "receipt balance did not increase")

        if pair.shares == 0 or before == 0:
            shares = delta
        else:
            shares = delta * pair.shares // before
        if shares <= 0:
            raise ExternalProtocolError(self.name, "supply", "deposit too small to mint a share")
        logger.debug(
            "%s supply %d: receipt %d -> %d, minted %d shares (pool %d)",
            self.name,
            amount,
            before,
            after,
            shares,
            pair.shares,
        )
        return shares

    def withdraw(self, token: str, shares: int, pair: PairState) -> int:
        if shares > pair.shares:
            raise InvariantViolationError(
                f"{self.name}: redeeming {shares} shares exceeds pool total {pair.shares}"
            )
        held = self.held_balance(token)
        amount = held * shares // pair.shares
        if amount == 0:
            return 0
        returned = call_external(
            self.name, "withdraw", self.client.withdraw, token, amount, self.custodian
        )
        if not isinstance(returned, int) or returned < 0:
            raise ExternalProtocolError(self.name, "withdraw", f"invalid amount {returned!r}")
        logger.debug(
            "%s withdraw %d shares of %d: held %d, requested %d, returned %d",
            self.name,
            shares,
            pair.shares,
            held,
            amount,
            returned,
        )
        return returned

    def underlying_of(self, token: str, shares: int, pair: PairState) -> int:
        if pair.shares == 0:
            return 0
        return self.held_balance(token) * shares // pair.shares


__all__ = ["LendingAdapter"]
