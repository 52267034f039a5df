"""In-memory stand-ins for the external systems the aggregator talks to.

They move real (simulated) token balances through a shared :class:`TokenBank`
so that conservation can be checked end to end. Each protocol exposes
``fail_next`` to make its next state-changing call raise before mutating
anything, which mimics a reverted external call.
"""

from __future__ import annotations

from collections import defaultdict
import logging

from .core.constants import BPS_DENOMINATOR, RATE_PRECISION

logger = logging.getLogger(__name__)

RAY = 10**27


class InsufficientFundsError(Exception):
    pass


class SimulatedRevert(Exception):
    pass


class TokenBank:
    """Account balances per token; doubles as the aggregator's funds gateway."""

    def __init__(self, custodian: str = "aggregator") -> None:
        self.custodian = custodian
        self._balances: defaultdict[tuple[str, str], int] = defaultdict(int)

    def mint(self, account: str, token: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        self._balances[(account, token)] += amount

    def balance_of(self, account: str, token: str) -> int:
        return self._balances.get((account, token), 0)

    def transfer(self, src: str, dst: str, token: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot transfer a negative amount")
        held = self.balance_of(src, token)
        if amount > held:
            raise InsufficientFundsError(f"{src} holds {held} {token}, needs {amount}")
        self._balances[(src, token)] = held - amount
        self._balances[(dst, token)] += amount

    def pull(self, account: str, token: str, amount: int) -> None:
        self.transfer(account, self.custodian, token, amount)

    def push(self, account: str, token: str, amount: int) -> None:
        self.transfer(self.custodian, account, token, amount)


class _Failable:
    fail_next = False

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next:
            self.fail_next = False
            raise SimulatedRevert(f"{operation} reverted")


class SimulatedReceiptToken:
    """Rebasing receipt: balances are scaled amounts times a growing index."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self.index = RAY
        self._scaled: defaultdict[str, int] = defaultdict(int)

    def balance_of(self, holder: str) -> int:
        return self._scaled.get(holder, 0) * self.index // RAY

    def total_supply(self) -> int:
        return sum(self._scaled.values()) * self.index // RAY

    def mint(self, holder: str, amount: int) -> None:
        self._scaled[holder] += amount * RAY // self.index

    def burn(self, holder: str, amount: int) -> None:
        if amount > self.balance_of(holder):
            raise InsufficientFundsError(f"{holder} receipt balance too low for {amount}")
        scaled = -(-amount * RAY // self.index)
        self._scaled[holder] = max(0, self._scaled[holder] - scaled)


class SimulatedLendingPool(_Failable):
    """Supply/withdraw pool issuing one rebasing receipt token per asset."""

    def __init__(self, bank: TokenBank, address: str = "lending-pool") -> None:
        self.bank = bank
        self.address = address
        self._receipts: dict[str, SimulatedReceiptToken] = {}

    def receipt_token(self, asset: str) -> SimulatedReceiptToken:
        return self._receipts.setdefault(asset, SimulatedReceiptToken(f"a{asset}"))

    def supply(self, asset: str, amount: int, on_behalf_of: str) -> None:
        self._maybe_fail("supply")
        self.bank.transfer(on_behalf_of, self.address, asset, amount)
        self.receipt_token(asset).mint(on_behalf_of, amount)

    def withdraw(self, asset: str, amount: int, to: str) -> int:
        self._maybe_fail("withdraw")
        self.receipt_token(asset).burn(to, amount)
        self.bank.transfer(self.address, to, asset, amount)
        return amount

    def accrue(self, asset: str, bps: int) -> int:
        """Grow every holder's receipt balance by ``bps``; returns interest minted."""

        receipt = self.receipt_token(asset)
        before = receipt.total_supply()
        receipt.index = receipt.index * (BPS_DENOMINATOR + bps) // BPS_DENOMINATOR
        interest = receipt.total_supply() - before
        self.bank.mint(self.address, asset, interest + 1)
        return interest


class SimulatedLiquidStaking(_Failable):
    """Share-issuing staking vault for a single token."""

    def __init__(self, bank: TokenBank, token: str, sender: str, address: str = "liquid-staking") -> None:
        self.bank = bank
        self.token = token
        self.sender = sender
        self.address = address
        self.total_shares = 0
        self.total_assets = 0

    def deposit(self, amount: int) -> int:
        self._maybe_fail("deposit")
        if self.total_shares == 0:
            shares = amount
        else:
            shares = amount * self.total_shares // self.total_assets
        self.bank.transfer(self.sender, self.address, self.token, amount)
        self.total_shares += shares
        self.total_assets += amount
        return shares

    def withdraw(self, shares: int) -> int:
        self._maybe_fail("withdraw")
        if shares > self.total_shares:
            raise InsufficientFundsError("Not enough shares")
        amount = shares * self.total_assets // self.total_shares
        self.total_shares -= shares
        self.total_assets -= amount
        self.bank.transfer(self.address, self.sender, self.token, amount)
        return amount

    def accrue(self, bps: int) -> int:
        reward = self.total_assets * bps // BPS_DENOMINATOR
        self.total_assets += reward
        self.bank.mint(self.address, self.token, reward)
        return reward


class SimulatedLPStaking(_Failable):
    """LP staking farm with separately claimable rewards."""

    def __init__(self, bank: TokenBank, token: str, sender: str, address: str = "lp-farm") -> None:
        self.bank = bank
        self.token = token
        self.sender = sender
        self.address = address
        self.staked = 0
        self.pending_rewards = 0

    def stake(self, amount: int) -> None:
        self._maybe_fail("stake")
        self.bank.transfer(self.sender, self.address, self.token, amount)
        self.staked += amount

    def unstake(self, amount: int) -> None:
        self._maybe_fail("unstake")
        if amount > self.staked:
            raise InsufficientFundsError("Not enough staked")
        self.staked -= amount
        self.bank.transfer(self.address, self.sender, self.token, amount)

    def claim(self) -> int:
        rewards, self.pending_rewards = self.pending_rewards, 0
        if rewards:
            self.bank.transfer(self.address, self.sender, self.token, rewards)
        return rewards

    def add_rewards(self, amount: int) -> None:
        self.bank.mint(self.address, self.token, amount)
        self.pending_rewards += amount


class SimulatedCompoundMarket(_Failable):
    """Money market whose shares appreciate through ``exchange_rate``."""

    def __init__(self, bank: TokenBank, token: str, sender: str, address: str = "money-market") -> None:
        self.bank = bank
        self.token = token
        self.sender = sender
        self.address = address
        self.rate = RATE_PRECISION
        self.shares = 0

    def exchange_rate(self) -> int:
        return self.rate

    def deposit(self, amount: int) -> int:
        self._maybe_fail("deposit")
        minted = amount * RATE_PRECISION // self.rate
        self.bank.transfer(self.sender, self.address, self.token, amount)
        self.shares += minted
        return minted

    def withdraw(self, shares: int) -> int:
        self._maybe_fail("withdraw")
        if shares > self.shares:
            raise InsufficientFundsError("Not enough shares")
        amount = shares * self.rate // RATE_PRECISION
        self.shares -= shares
        self.bank.transfer(self.address, self.sender, self.token, amount)
        return amount

    def accrue(self, bps: int) -> None:
        before = self.shares * self.rate // RATE_PRECISION
        self.rate = self.rate * (BPS_DENOMINATOR + bps) // BPS_DENOMINATOR
        after = self.shares * self.rate // RATE_PRECISION
        self.bank.mint(self.address, self.token, after - before + 1)


__all__ = [
    "InsufficientFundsError",
    "SimulatedRevert",
    "TokenBank",
    "SimulatedReceiptToken",
    "SimulatedLendingPool",
    "SimulatedLiquidStaking",
    "SimulatedLPStaking",
    "SimulatedCompoundMarket",
]
