"""
Customer subscription actions — subscribe, pause, resume, cancel.

Pause/cancel/resume are refused while the next committed delivery is
``buffer_days`` or fewer days away. Pausing or cancelling cancels that
delivery with its order, refunds a wallet charge, returns the stock and
releases the reservation held for the next cycle, all in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.customer import Customer
from config import settings
from models.order import Order, OrderItem, OrderTracking, Payment
from models.product import StockTransaction
from models.subscription import Subscription, SubscriptionDelivery, SubscriptionPlan
from models.wallet import WalletTransaction
from services import notifications
from services.eligibility import has_insufficient_stock
from services.errors import (
    BufferWindowViolation, CustomerNotFound, InsufficientStock, InvalidStatusTransition,
    PlanNotFound, ProductNotSubscribable, SubscriptionBusy, SubscriptionNotFound,
    UnsupportedPaymentMethod, WalletNotFound,
)
from services.fulfilment import restock_product
from services.money import WalletSnapshot, to_money
from services.notifications import NotificationQueue, Notifier
from services.renewal_handlers import already_charged
from services.scheduling import days_until, next_renewal_date, store_today
from services.subscription_queries import (
    claim_is_live, find_next_delivery, find_open_reservation, load_subscription, lock_product, lock_wallet,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_DAYS = 2

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS = {
    "PAUSED": {"ACTIVE"},
    "ACTIVE": {"PAUSED"},
    "CANCELLED": {"ACTIVE", "PAUSED"},
}


@dataclass
class PauseCancelCheck:
    can_proceed: bool
    next_delivery: SubscriptionDelivery | None = None
    days_left: int | None = None


async def can_pause_or_cancel(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    today: date,
    buffer_days: int = DEFAULT_BUFFER_DAYS,
) -> PauseCancelCheck:
    """Allowed when there is no upcoming delivery or it is more than ``buffer_days`` away."""
    delivery = await find_next_delivery(db, subscription_id, today)
    if delivery is None:
        return PauseCancelCheck(can_proceed=True)
    days_left = days_until(delivery.delivery_date, today)
    return PauseCancelCheck(can_proceed=days_left > buffer_days, next_delivery=delivery, days_left=days_left)


async def _load_for_action(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    target_status: str,
    customer_id: uuid.UUID | None,
) -> Subscription:
    subscription = await load_subscription(db, subscription_id, for_update=True)
    if customer_id is not None and subscription.customer_id != customer_id:
        raise SubscriptionNotFound(f"Subscription {subscription_id} not found", subscription_id=subscription_id)
    if subscription.status not in ALLOWED_TRANSITIONS[target_status]:
        raise InvalidStatusTransition(
            f"Can't move subscription from {subscription.status} to {target_status}",
            status=subscription.status, target=target_status,
        )
    if claim_is_live(subscription, datetime.now(timezone.utc), settings.RENEWAL_CLAIM_LEASE_SEC):
        raise SubscriptionBusy(
            f"Subscription {subscription_id} is being renewed, try again shortly",
            subscription_id=subscription_id,
        )
    if subscription.is_processing:
        logger.warning("Clearing expired renewal claim on subscription %s.", subscription_id)
        subscription.is_processing = False
        subscription.processing_started_at = None
    return subscription


async def _check_buffer(
    db: AsyncSession,
    subscription: Subscription,
    verb: str,
    today: date,
    buffer_days: int,
) -> PauseCancelCheck:
    check = await can_pause_or_cancel(db, subscription.id, today, buffer_days)
    if not check.can_proceed:
        raise BufferWindowViolation(
            f"Can't {verb} subscription within {buffer_days} days of next delivery",
            delivery_date=check.next_delivery.delivery_date, days_left=check.days_left,
        )
    return check


async def _cancel_delivery(
    db: AsyncSession,
    subscription: Subscription,
    delivery: SubscriptionDelivery,
    action: str,
) -> None:
    order = (await db.execute(
        select(Order).where(Order.id == delivery.order_id).with_for_update()
    )).scalar_one()

    delivery.status = "CANCELLED"
    order.status = "CANCELLED"
    order.cancelled_at = datetime.now(timezone.utc)
    db.add(OrderTracking(
        order_id=order.id,
        status="CANCELLED",
        description=f"Cancelled due to subscription {action.lower()}",
        actor_type="CUSTOMER",
    ))

    payment_status = "REFUNDED" if subscription.payment_method == "WALLET" else "FAILED"
    order.payment_status = payment_status
    payment = (await db.execute(
        select(Payment).where(Payment.order_id == order.id)
    )).scalar_one_or_none()
    if payment is not None:
        payment.payment_status = payment_status

    if subscription.payment_method == "WALLET":
        await _refund_order(db, subscription, order)

    consumed = (await db.execute(
        select(StockTransaction.id).where(
            StockTransaction.order_id == order.id,
            StockTransaction.transaction_type == "OUT",
        )
    )).first()
    if consumed is not None:
        items = (await db.execute(
            select(OrderItem).where(OrderItem.order_id == order.id)
        )).scalars().all()
        for item in items:
            product = await lock_product(db, item.product_id)
            await restock_product(
                db, product, order.id, f"subscription {action.lower()}",
                quantity=item.package_size * item.quantity,
            )

    logger.info("Cancelled order %s of subscription %s (%s).", order.order_number, subscription.id, action)


async def _refund_order(db: AsyncSession, subscription: Subscription, order: Order) -> None:
    wallet = await lock_wallet(db, subscription.customer_id)
    if wallet is None:
        raise WalletNotFound(f"Wallet not found for customer {subscription.customer_id}")
    charge = (await db.execute(
        select(WalletTransaction).where(WalletTransaction.order_id == order.id).with_for_update()
    )).scalar_one_or_none()
    if charge is None or charge.transaction_status != "COMPLETED":
        return
    WalletSnapshot.of(wallet).credit(order.total_amount).apply_to(wallet)
    charge.transaction_type = "REFUND"
    charge.transaction_status = "REFUNDED"
    charge.description = f"Refund for order {order.order_number}"


async def _release_reservation(db: AsyncSession, subscription: Subscription) -> None:
    wallet = await lock_wallet(db, subscription.customer_id)
    if wallet is None:
        raise WalletNotFound(f"Wallet not found for customer {subscription.customer_id}")
    reservation = await find_open_reservation(db, wallet.id, subscription.id)
    if reservation is None:
        return
    WalletSnapshot.of(wallet).release(reservation.amount).apply_to(wallet)
    reservation.transaction_type = "REFUND"
    reservation.transaction_status = "REFUNDED"
    reservation.description = f"Reservation released for subscription {subscription.id}"


async def _stop(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    action: str,
    today: date | None,
    buffer_days: int,
    customer_id: uuid.UUID | None,
    notify: Notifier | None,
) -> Subscription:
    today = today or store_today(settings.RENEWAL_TIMEZONE)
    outbox = NotificationQueue(notify)
    verb = "pause" if action == "PAUSED" else "cancel"

    async with db.begin():
        subscription = await _load_for_action(db, subscription_id, action, customer_id)
        check = await _check_buffer(db, subscription, verb, today, buffer_days)

        subscription.status = action
        if check.next_delivery is not None:
            await _cancel_delivery(db, subscription, check.next_delivery, action)
        if subscription.payment_method == "WALLET":
            await _release_reservation(db, subscription)
        outbox.add(subscription.customer.telegram_id, notifications.MSG_ACTION_CONFIRMED[action])

    await outbox.flush()
    logger.info("Subscription %s %s by customer.", subscription.id, action.lower())
    return subscription


async def pause_subscription(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    *,
    today: date | None = None,
    buffer_days: int = DEFAULT_BUFFER_DAYS,
    customer_id: uuid.UUID | None = None,
    notify: Notifier | None = None,
) -> Subscription:
    return await _stop(db, subscription_id, "PAUSED", today, buffer_days, customer_id, notify)


async def cancel_subscription(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    *,
    today: date | None = None,
    buffer_days: int = DEFAULT_BUFFER_DAYS,
    customer_id: uuid.UUID | None = None,
    notify: Notifier | None = None,
) -> Subscription:
    return await _stop(db, subscription_id, "CANCELLED", today, buffer_days, customer_id, notify)


async def resume_subscription(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    *,
    today: date | None = None,
    buffer_days: int = DEFAULT_BUFFER_DAYS,
    customer_id: uuid.UUID | None = None,
    notify: Notifier | None = None,
) -> Subscription:
    """
    PAUSED → ACTIVE.

    A WALLET subscription whose next charge has no reservation behind it
    locks the current plan price again; a subscription already charged for
    its cycle gets its reservation from the next renewal run instead.
    """
    today = today or store_today(settings.RENEWAL_TIMEZONE)
    outbox = NotificationQueue(notify)

    async with db.begin():
        subscription = await _load_for_action(db, subscription_id, "ACTIVE", customer_id)
        await _check_buffer(db, subscription, "resume", today, buffer_days)

        if subscription.payment_method == "WALLET" and not already_charged(subscription):
            wallet = await lock_wallet(db, subscription.customer_id)
            if wallet is None:
                raise WalletNotFound(f"Wallet not found for customer {subscription.customer_id}")
            if await find_open_reservation(db, wallet.id, subscription.id) is None:
                price = to_money(subscription.plan.price)
                WalletSnapshot.of(wallet).lock(price).apply_to(wallet)
                db.add(WalletTransaction(
                    wallet_id=wallet.id,
                    subscription_id=subscription.id,
                    amount=price,
                    transaction_type="PURCHASE",
                    transaction_status="PENDING",
                    description=f"Funds locked on resume of subscription {subscription.id}",
                ))
                subscription.plan_price = price

        subscription.status = "ACTIVE"
        outbox.add(subscription.customer.telegram_id, notifications.MSG_ACTION_CONFIRMED["ACTIVE"])

    await outbox.flush()
    logger.info("Subscription %s resumed by customer.", subscription.id)
    return subscription


async def create_subscription(
    db: AsyncSession,
    customer_id: uuid.UUID,
    plan_id: uuid.UUID,
    payment_method: str,
    shipping_address: str,
    *,
    today: date | None = None,
    notify: Notifier | None = None,
) -> Subscription:
    """Subscribe a customer; WALLET subscriptions lock the first cycle's price."""
    today = today or store_today(settings.RENEWAL_TIMEZONE)
    outbox = NotificationQueue(notify)

    if payment_method not in ("WALLET", "COD"):
        raise UnsupportedPaymentMethod(
            "Invalid payment method. Must be WALLET or COD.", payment_method=payment_method,
        )

    async with db.begin():
        plan = await db.get(SubscriptionPlan, plan_id)
        if plan is None or not plan.is_active:
            raise PlanNotFound("Subscription plan not found", plan_id=plan_id)
        product = await lock_product(db, plan.product_id)
        if not product.is_subscription:
            raise ProductNotSubscribable(f"Product {product.name} is not available for subscription")
        if has_insufficient_stock(product):
            raise InsufficientStock(
                f"Insufficient stock for product {product.name}",
                available=product.stock_quantity, required=product.package_size,
            )
        customer = await db.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFound("Customer not found", customer_id=customer_id)

        price = to_money(plan.price)
        subscription = Subscription(
            customer_id=customer.id,
            plan_id=plan.id,
            status="ACTIVE",
            payment_method=payment_method,
            start_date=today,
            renewal_date=next_renewal_date(today, plan.frequency),
            plan_price=price,
            shipping_address=shipping_address,
            is_processing=False,
        )
        db.add(subscription)
        await db.flush()

        if payment_method == "WALLET":
            wallet = await lock_wallet(db, customer.id)
            if wallet is None:
                raise WalletNotFound("Customer wallet not found. Please create a wallet first.")
            WalletSnapshot.of(wallet).lock(price).apply_to(wallet)
            db.add(WalletTransaction(
                wallet_id=wallet.id,
                subscription_id=subscription.id,
                amount=price,
                transaction_type="PURCHASE",
                transaction_status="PENDING",
                description=f"Initial lock for subscription plan {plan.name}",
            ))

        outbox.add(customer.telegram_id, notifications.MSG_SUBSCRIBED.format(
            plan=plan.name, date=subscription.renewal_date.strftime("%b %d, %Y"),
        ))

    await outbox.flush()
    logger.info("Customer %s subscribed to plan %s via %s.", customer.id, plan.id, payment_method)
    return subscription
