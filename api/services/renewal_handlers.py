"""
Renewal handlers — one cycle of a due subscription, per payment method.

Cycle states:
  DUE → CHARGING → FULFILLED
                 → PAUSED (insufficient funds / stock; terminal for this run)
                 → ERROR  (exception propagates to the job's retry loop)

WALLET runs two transactions. The charge step settles the funds locked for
this cycle (at subscribe time or by the previous cycle) and materializes the
order; the lock step reserves the next cycle's price and advances the
renewal date. ``Subscription.last_charged_for`` records a committed charge,
so a re-run after a crash between the two steps only repeats the lock step.

COD runs a single transaction: order with a PENDING payment, delivery, and
the renewal advance.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.subscription import Subscription
from models.wallet import WalletTransaction
from services import notifications
from services.eligibility import (
    can_lock_next_payment, has_insufficient_stock, has_insufficient_wallet_balance,
)
from services.errors import UnsupportedPaymentMethod, WalletNotFound
from services.fulfilment import (
    create_order_with_items, create_payment, create_subscription_delivery, update_product_stock,
)
from services.money import WalletSnapshot, to_money
from services.notifications import NotificationQueue, Notifier
from services.scheduling import DEFAULT_DELIVERY_BUFFER_DAYS, next_renewal_date
from services.subscription_queries import (
    find_open_reservation, load_subscription, lock_product, lock_wallet,
)

logger = logging.getLogger(__name__)


class RenewalOutcome(str, Enum):
    RENEWED = "RENEWED"
    PAUSED_INSUFFICIENT_FUNDS = "PAUSED_INSUFFICIENT_FUNDS"
    PAUSED_INSUFFICIENT_STOCK = "PAUSED_INSUFFICIENT_STOCK"
    PAUSED_NEXT_CYCLE_FUNDS = "PAUSED_NEXT_CYCLE_FUNDS"


def already_charged(subscription: Subscription) -> bool:
    return subscription.last_charged_for == subscription.renewal_date


class RenewalHandler:
    payment_method: str = ""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notify: Notifier | None = None,
        delivery_buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS,
    ):
        self._session_factory = session_factory
        self._notify = notify
        self._delivery_buffer_days = delivery_buffer_days

    async def process(self, subscription_id: uuid.UUID, today: date) -> RenewalOutcome:
        raise NotImplementedError

    def _outbox(self) -> NotificationQueue:
        return NotificationQueue(self._notify)

    async def _pause(
        self,
        subscription: Subscription,
        outbox: NotificationQueue,
        message: str,
        reason: str,
    ) -> None:
        subscription.status = "PAUSED"
        subscription.is_processing = False
        subscription.processing_started_at = None
        outbox.add(subscription.customer.telegram_id, message)
        logger.warning("Subscription %s paused due to %s.", subscription.id, reason)

    async def _fulfil(
        self,
        db: AsyncSession,
        subscription: Subscription,
        product,
        today: date,
        outbox: NotificationQueue,
        payment_status: str,
        wallet_transaction: WalletTransaction | None = None,
    ):
        """Order, payment, stock movement and delivery for the current cycle."""
        customer = subscription.customer
        price = to_money(subscription.plan_price)
        order = await create_order_with_items(
            db, subscription, customer, product, price, self.payment_method,
        )
        if wallet_transaction is not None:
            wallet_transaction.transaction_status = "COMPLETED"
            wallet_transaction.order_id = order.id
            wallet_transaction.description = (
                f"Wallet payment for subscription {subscription.id} (order {order.order_number})"
            )
            await db.flush()
        await create_payment(
            db, order, payment_status,
            wallet_transaction_id=wallet_transaction.id if wallet_transaction is not None else None,
        )
        await update_product_stock(db, product, order.id)
        await create_subscription_delivery(
            db, subscription, order, today, customer, self.payment_method, outbox,
            buffer_days=self._delivery_buffer_days,
        )
        subscription.last_charged_for = subscription.renewal_date
        return order


class WalletRenewalHandler(RenewalHandler):
    payment_method = "WALLET"

    async def process(self, subscription_id: uuid.UUID, today: date) -> RenewalOutcome:
        outbox = self._outbox()
        async with self._session_factory() as db:
            async with db.begin():
                paused = await self._charge_current_cycle(db, subscription_id, today, outbox)
        await outbox.flush()
        if paused is not None:
            return paused

        async with self._session_factory() as db:
            async with db.begin():
                outcome = await self._lock_next_cycle(db, subscription_id, today, outbox)
        await outbox.flush()
        return outcome

    async def _charge_current_cycle(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        today: date,
        outbox: NotificationQueue,
    ) -> RenewalOutcome | None:
        """Transaction A. Returns an outcome only when the cycle stops here."""
        subscription = await load_subscription(db, subscription_id, for_update=True)
        customer = subscription.customer
        wallet = await lock_wallet(db, customer.id)
        if wallet is None:
            raise WalletNotFound(f"Wallet not found for customer {customer.id}", customer_id=customer.id)

        if already_charged(subscription):
            logger.info(
                "Subscription %s already charged for %s; resuming at the lock step.",
                subscription.id, subscription.renewal_date,
            )
            return None

        price = to_money(subscription.plan_price)
        snapshot = WalletSnapshot.of(wallet)
        if has_insufficient_wallet_balance(snapshot, price):
            await self._pause(
                subscription, outbox, notifications.MSG_PAUSED_LOW_BALANCE,
                "insufficient locked balance",
            )
            return RenewalOutcome.PAUSED_INSUFFICIENT_FUNDS

        product = await lock_product(db, subscription.plan.product_id)
        if has_insufficient_stock(product):
            await self._pause(
                subscription, outbox, notifications.MSG_PAUSED_OUT_OF_STOCK,
                "insufficient stock",
            )
            return RenewalOutcome.PAUSED_INSUFFICIENT_STOCK

        snapshot.settle(price).apply_to(wallet)

        reservation = await find_open_reservation(db, wallet.id, subscription.id)
        if reservation is None:
            reservation = WalletTransaction(
                wallet_id=wallet.id,
                subscription_id=subscription.id,
                transaction_type="PURCHASE",
                transaction_status="PENDING",
            )
            db.add(reservation)
        reservation.amount = price
        await self._fulfil(
            db, subscription, product, today, outbox,
            payment_status="COMPLETED", wallet_transaction=reservation,
        )
        logger.info("Charged %s from wallet %s for subscription %s.", price, wallet.id, subscription.id)
        return None

    async def _lock_next_cycle(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        today: date,
        outbox: NotificationQueue,
    ) -> RenewalOutcome:
        """Transaction B: reserve the next cycle's price and advance the renewal date."""
        subscription = await load_subscription(db, subscription_id, for_update=True)
        customer = subscription.customer
        wallet = await lock_wallet(db, customer.id)
        if wallet is None:
            raise WalletNotFound(f"Wallet not found for customer {customer.id}", customer_id=customer.id)

        next_price = to_money(subscription.plan.price)
        snapshot = WalletSnapshot.of(wallet)
        if not can_lock_next_payment(snapshot, next_price):
            await self._pause(
                subscription, outbox, notifications.MSG_PAUSED_NEXT_CYCLE_FUNDS,
                "insufficient funds for next cycle",
            )
            return RenewalOutcome.PAUSED_NEXT_CYCLE_FUNDS

        snapshot.lock(next_price).apply_to(wallet)
        db.add(WalletTransaction(
            wallet_id=wallet.id,
            subscription_id=subscription.id,
            amount=next_price,
            transaction_type="PURCHASE",
            transaction_status="PENDING",
            description=f"Funds locked for next renewal of subscription {subscription.id}",
        ))

        subscription.plan_price = next_price
        subscription.renewal_date = next_renewal_date(today, subscription.plan.frequency)
        subscription.is_processing = False
        subscription.processing_started_at = None
        outbox.add(customer.telegram_id, notifications.MSG_RENEWED)
        logger.info("Renewed subscription %s with WALLET.", subscription.id)
        return RenewalOutcome.RENEWED


class CodRenewalHandler(RenewalHandler):
    payment_method = "COD"

    async def process(self, subscription_id: uuid.UUID, today: date) -> RenewalOutcome:
        outbox = self._outbox()
        async with self._session_factory() as db:
            async with db.begin():
                outcome = await self._renew(db, subscription_id, today, outbox)
        await outbox.flush()
        return outcome

    async def _renew(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        today: date,
        outbox: NotificationQueue,
    ) -> RenewalOutcome:
        subscription = await load_subscription(db, subscription_id, for_update=True)

        if not already_charged(subscription):
            product = await lock_product(db, subscription.plan.product_id)
            if has_insufficient_stock(product):
                await self._pause(
                    subscription, outbox, notifications.MSG_PAUSED_OUT_OF_STOCK,
                    "insufficient stock",
                )
                return RenewalOutcome.PAUSED_INSUFFICIENT_STOCK
            await self._fulfil(db, subscription, product, today, outbox, payment_status="PENDING")

        subscription.plan_price = to_money(subscription.plan.price)
        subscription.renewal_date = next_renewal_date(today, subscription.plan.frequency)
        subscription.is_processing = False
        subscription.processing_started_at = None
        logger.info("Renewed subscription %s with COD.", subscription.id)
        return RenewalOutcome.RENEWED


def build_handlers(
    session_factory: async_sessionmaker[AsyncSession],
    notify: Notifier | None = None,
    delivery_buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS,
) -> dict[str, RenewalHandler]:
    return {
        handler.payment_method: handler
        for handler in (
            WalletRenewalHandler(session_factory, notify, delivery_buffer_days),
            CodRenewalHandler(session_factory, notify, delivery_buffer_days),
        )
    }


def handler_for(handlers: dict[str, RenewalHandler], payment_method: str) -> RenewalHandler:
    handler = handlers.get(payment_method)
    if handler is None:
        raise UnsupportedPaymentMethod(
            f"Unsupported payment method: {payment_method}", payment_method=payment_method,
        )
    return handler
