"""
Money helpers — Decimal-only currency arithmetic for wallet movements.

``WalletSnapshot`` is an immutable view of a wallet's two balances. Every
movement returns a new snapshot and refuses to break the ledger invariant
``0 <= locked_balance <= balance``, so callers validate a movement before
writing it to the row.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from services.errors import InsufficientLockedBalance, InsufficientWalletBalance

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce a DB/API value to a two-place Decimal. Floats go through str()."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class WalletSnapshot:
    balance: Decimal
    locked_balance: Decimal

    @classmethod
    def of(cls, wallet) -> WalletSnapshot:
        return cls(to_money(wallet.balance), to_money(wallet.locked_balance))

    @property
    def available(self) -> Decimal:
        """Funds not reserved for any renewal."""
        return self.balance - self.locked_balance

    def lock(self, amount: Decimal) -> WalletSnapshot:
        amount = to_money(amount)
        if self.available < amount:
            raise InsufficientWalletBalance(
                "Insufficient wallet balance to lock funds",
                available=self.available, required=amount,
            )
        return WalletSnapshot(self.balance, self.locked_balance + amount)

    def release(self, amount: Decimal) -> WalletSnapshot:
        amount = to_money(amount)
        if self.locked_balance < amount:
            raise InsufficientLockedBalance(
                "Insufficient locked balance",
                locked_balance=self.locked_balance, required=amount,
            )
        return WalletSnapshot(self.balance, self.locked_balance - amount)

    def settle(self, amount: Decimal) -> WalletSnapshot:
        """Charge reserved funds: both balances drop by ``amount``."""
        amount = to_money(amount)
        if self.locked_balance < amount or self.balance < amount:
            raise InsufficientLockedBalance(
                "Wallet deduction exceeds reserved funds",
                locked_balance=self.locked_balance, required=amount,
            )
        return WalletSnapshot(self.balance - amount, self.locked_balance - amount)

    def credit(self, amount: Decimal) -> WalletSnapshot:
        return WalletSnapshot(self.balance + to_money(amount), self.locked_balance)

    def apply_to(self, wallet) -> None:
        wallet.balance = self.balance
        wallet.locked_balance = self.locked_balance
