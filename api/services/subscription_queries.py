"""Row loaders shared by the renewal handlers and customer actions."""

import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.product import Product
from models.subscription import Subscription, SubscriptionDelivery
from models.wallet import Wallet, WalletTransaction
from services.errors import ProductNotFound, SubscriptionNotFound


async def load_subscription(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Subscription:
    query = select(Subscription).where(Subscription.id == subscription_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    subscription = (await db.execute(query)).scalar_one_or_none()
    if subscription is None:
        raise SubscriptionNotFound(f"Subscription {subscription_id} not found", subscription_id=subscription_id)
    return subscription


async def lock_wallet(db: AsyncSession, customer_id: uuid.UUID) -> Wallet | None:
    result = await db.execute(
        select(Wallet)
        .where(Wallet.customer_id == customer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", product_id=product_id)
    return product


async def find_open_reservation(
    db: AsyncSession,
    wallet_id: uuid.UUID,
    subscription_id: uuid.UUID,
) -> WalletTransaction | None:
    """The PENDING lock backing a subscription's next charge, if any."""
    result = await db.execute(
        select(WalletTransaction)
        .where(
            WalletTransaction.wallet_id == wallet_id,
            WalletTransaction.subscription_id == subscription_id,
            WalletTransaction.transaction_type == "PURCHASE",
            WalletTransaction.transaction_status == "PENDING",
            WalletTransaction.order_id.is_(None),
        )
        .order_by(WalletTransaction.created_at.asc())
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def find_next_delivery(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    today: date,
) -> SubscriptionDelivery | None:
    """Earliest non-cancelled delivery on or after ``today``."""
    result = await db.execute(
        select(SubscriptionDelivery)
        .where(
            SubscriptionDelivery.subscription_id == subscription_id,
            SubscriptionDelivery.delivery_date >= today,
            SubscriptionDelivery.status != "CANCELLED",
        )
        .order_by(SubscriptionDelivery.delivery_date.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def claimable(stale_before: datetime):
    """Not claimed, or claimed by a run whose lease ran out before ``stale_before``."""
    return or_(
        Subscription.is_processing.is_(False),
        Subscription.processing_started_at.is_(None),
        Subscription.processing_started_at < stale_before,
    )


def claim_is_live(subscription: Subscription, now: datetime, lease_sec: float) -> bool:
    if not subscription.is_processing or subscription.processing_started_at is None:
        return False
    started_at = subscription.processing_started_at
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    return started_at >= now - timedelta(seconds=lease_sec)
