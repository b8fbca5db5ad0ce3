"""Eligibility predicates over wallet and stock snapshots."""

from decimal import Decimal

from services.money import WalletSnapshot, to_money


def has_insufficient_stock(product, quantity: int = 1) -> bool:
    """True when one renewal (``package_size`` × quantity) exceeds stock."""
    return product.package_size * quantity > product.stock_quantity


def has_insufficient_wallet_balance(wallet: WalletSnapshot, price: Decimal) -> bool:
    """True when the reserved funds (or the balance) cannot cover ``price``."""
    price = to_money(price)
    return wallet.locked_balance < price or wallet.balance < price


def can_lock_next_payment(wallet: WalletSnapshot, price: Decimal) -> bool:
    """True when unreserved funds can back the following cycle."""
    return wallet.available >= to_money(price)
