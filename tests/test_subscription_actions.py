"""Tests for subscribe / pause / resume / cancel."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models import Order, Product, Subscription, SubscriptionDelivery, SubscriptionPlan
from services import notifications
from services.errors import (
    BufferWindowViolation, InsufficientLockedBalance, InsufficientWalletBalance, InvalidStatusTransition,
    ProductNotSubscribable, SubscriptionBusy, SubscriptionNotFound, WalletNotFound,
)
from services.renewal_handlers import CodRenewalHandler, WalletRenewalHandler
from services.renewal_job import SubscriptionRenewalJob
from services.subscription_actions import (
    can_pause_or_cancel, cancel_subscription, create_subscription,
    pause_subscription, resume_subscription,
)
from config import RenewalConfig
from factories import (
    all_rows, deliveries_for, get, get_wallet, orders_for, payment_for, seed_subscription,
    set_fields, stock_movements, wallet_transactions_for,
)

RENEWED_ON = date(2026, 3, 10)  # monthly delivery lands on 2026-04-01


async def _renewed_wallet_subscription(session_factory, notifier, **kwargs):
    seed = await seed_subscription(session_factory, balance="100.00", locked="20.00", stock=10, **kwargs)
    await WalletRenewalHandler(session_factory, notifier).process(seed.subscription_id, RENEWED_ON)
    notifier.sent.clear()
    return seed


async def _act(session_factory, action, subscription_id, **kwargs):
    async with session_factory() as db:
        return await action(db, subscription_id, **kwargs)


# ── Buffer window ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_can_pause_without_upcoming_delivery(session_factory):
    seed = await seed_subscription(session_factory)
    async with session_factory() as db:
        check = await can_pause_or_cancel(db, seed.subscription_id, RENEWED_ON)
    assert check.can_proceed is True
    assert check.next_delivery is None


@pytest.mark.asyncio
async def test_buffer_window_polarity(session_factory, notifier):
    """Far from the delivery is allowed, inside the buffer is refused."""
    seed = await _renewed_wallet_subscription(session_factory, notifier)
    async with session_factory() as db:
        far = await can_pause_or_cancel(db, seed.subscription_id, date(2026, 3, 29), buffer_days=2)
        near = await can_pause_or_cancel(db, seed.subscription_id, date(2026, 3, 30), buffer_days=2)
    assert (far.can_proceed, far.days_left) == (True, 3)
    assert (near.can_proceed, near.days_left) == (False, 2)


@pytest.mark.asyncio
async def test_pause_inside_buffer_is_rejected_without_changes(session_factory, notifier):
    seed = await _renewed_wallet_subscription(session_factory, notifier)

    with pytest.raises(BufferWindowViolation):
        await _act(session_factory, pause_subscription, seed.subscription_id,
                   today=date(2026, 3, 31), notify=notifier)

    sub = await get(session_factory, Subscription, seed.subscription_id)
    assert sub.status == "ACTIVE"
    [order] = await orders_for(session_factory, seed.subscription_id)
    assert order.status == "CONFIRMED"
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("80.00"), Decimal("20.00"))
    assert notifier.sent == []


# ── Cancel / pause ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_inside_buffer_is_rejected_without_changes(session_factory, notifier):
    seed = await _renewed_wallet_subscription(session_factory, notifier)

    with pytest.raises(BufferWindowViolation):
        await _act(session_factory, cancel_subscription, seed.subscription_id,
                   today=date(2026, 3, 31), buffer_days=2, notify=notifier)

    sub = await get(session_factory, Subscription, seed.subscription_id)
    assert sub.status == "ACTIVE"
    [delivery] = await deliveries_for(session_factory, seed.subscription_id)
    assert delivery.status == "CONFIRMED"
    [order] = await orders_for(session_factory, seed.subscription_id)
    assert order.status == "CONFIRMED"
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("80.00"), Decimal("20.00"))
    assert (await get(session_factory, Product, seed.product_id)).stock_quantity == 9
    assert notifier.sent == []

@pytest.mark.asyncio
async def test_cancel_refunds_order_and_releases_reservation(session_factory, notifier):
    seed = await _renewed_wallet_subscription(session_factory, notifier)

    await _act(session_factory, cancel_subscription, seed.subscription_id,
               today=RENEWED_ON, notify=notifier)

    sub = await get(session_factory, Subscription, seed.subscription_id)
    assert sub.status == "CANCELLED"
    [delivery] = await deliveries_for(session_factory, seed.subscription_id)
    assert delivery.status == "CANCELLED"
    order = await get(session_factory, Order, delivery.order_id)
    assert order.status == "CANCELLED"
    assert order.payment_status == "REFUNDED"
    assert order.cancelled_at is not None
    assert (await payment_for(session_factory, order.id)).payment_status == "REFUNDED"

    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("100.00"), Decimal("0.00"))
    txns = await wallet_transactions_for(session_factory, seed.subscription_id)
    assert sorted((t.transaction_type, t.transaction_status) for t in txns) == [
        ("REFUND", "REFUNDED"), ("REFUND", "REFUNDED"),
    ]

    assert (await get(session_factory, Product, seed.product_id)).stock_quantity == 10
    movements = await stock_movements(session_factory, seed.product_id)
    assert sorted(m.transaction_type for m in movements) == ["IN", "OUT"]
    assert notifier.messages() == [notifications.MSG_ACTION_CONFIRMED["CANCELLED"]]


@pytest.mark.asyncio
async def test_pause_without_delivery_releases_reservation(session_factory, notifier):
    seed = await seed_subscription(session_factory, balance="100.00", locked="20.00")

    sub = await _act(session_factory, pause_subscription, seed.subscription_id,
                     today=RENEWED_ON, notify=notifier)

    assert sub.status == "PAUSED"
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("100.00"), Decimal("0.00"))
    [txn] = await wallet_transactions_for(session_factory, seed.subscription_id)
    assert txn.transaction_status == "REFUNDED"


@pytest.mark.asyncio
async def test_cod_cancel_marks_payment_failed_and_restocks(session_factory, notifier):
    seed = await seed_subscription(session_factory, payment_method="COD", with_wallet=False)
    await CodRenewalHandler(session_factory, notifier).process(seed.subscription_id, RENEWED_ON)

    await _act(session_factory, cancel_subscription, seed.subscription_id,
               today=RENEWED_ON, notify=notifier)

    [order] = await orders_for(session_factory, seed.subscription_id)
    assert order.status == "CANCELLED"
    assert order.payment_status == "FAILED"
    assert (await payment_for(session_factory, order.id)).payment_status == "FAILED"
    assert (await get(session_factory, Product, seed.product_id)).stock_quantity == 10



@pytest.mark.asyncio
async def test_cancel_restocks_the_product_that_was_ordered(session_factory, notifier):
    seed = await _renewed_wallet_subscription(session_factory, notifier)
    async with session_factory() as db:
        async with db.begin():
            replacement = Product(
                name="Fresh Milk 2L", unit_price=Decimal("38.00"), unit_type="LITRE",
                package_size=2, stock_quantity=5, is_subscription=True,
            )
            db.add(replacement)
    await set_fields(session_factory, SubscriptionPlan, seed.plan_id, product_id=replacement.id)

    await _act(session_factory, cancel_subscription, seed.subscription_id,
               today=RENEWED_ON, notify=notifier)

    assert (await get(session_factory, Product, seed.product_id)).stock_quantity == 10
    assert (await get(session_factory, Product, replacement.id)).stock_quantity == 5
    assert await stock_movements(session_factory, replacement.id) == []

@pytest.mark.asyncio
async def test_release_beyond_locked_balance_fails_atomically(session_factory, notifier):
    seed = await seed_subscription(session_factory, balance="100.00", locked="5.00", with_reservation=True)

    with pytest.raises(InsufficientLockedBalance):
        await _act(session_factory, cancel_subscription, seed.subscription_id, today=RENEWED_ON, notify=notifier)

    assert (await get(session_factory, Subscription, seed.subscription_id)).status == "ACTIVE"
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("100.00"), Decimal("5.00"))


@pytest.mark.asyncio
async def test_invalid_transitions(session_factory, notifier):
    cancelled = await seed_subscription(session_factory, status="CANCELLED", with_reservation=False)
    active = await seed_subscription(session_factory)

    with pytest.raises(InvalidStatusTransition):
        await _act(session_factory, pause_subscription, cancelled.subscription_id, today=RENEWED_ON)
    with pytest.raises(InvalidStatusTransition):
        await _act(session_factory, cancel_subscription, cancelled.subscription_id, today=RENEWED_ON)
    with pytest.raises(InvalidStatusTransition):
        await _act(session_factory, resume_subscription, active.subscription_id, today=RENEWED_ON)


@pytest.mark.asyncio
async def test_busy_subscription_is_rejected(session_factory):
    seed = await seed_subscription(session_factory, is_processing=True)

    with pytest.raises(SubscriptionBusy):
        await _act(session_factory, pause_subscription, seed.subscription_id, today=RENEWED_ON)



@pytest.mark.asyncio
async def test_expired_renewal_claim_does_not_block_actions(session_factory, notifier):
    seed = await seed_subscription(
        session_factory, is_processing=True,
        processing_started_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    sub = await _act(session_factory, pause_subscription, seed.subscription_id,
                     today=RENEWED_ON, notify=notifier)

    assert sub.status == "PAUSED"
    stored = await get(session_factory, Subscription, seed.subscription_id)
    assert stored.is_processing is False
    assert stored.processing_started_at is None

@pytest.mark.asyncio
async def test_action_scoped_to_owner(session_factory):
    seed = await seed_subscription(session_factory)
    other = await seed_subscription(session_factory)

    with pytest.raises(SubscriptionNotFound):
        await _act(session_factory, pause_subscription, seed.subscription_id,
                   today=RENEWED_ON, customer_id=other.customer_id)


# ── Resume ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pause_then_resume_relocks_funds(session_factory, notifier):
    seed = await seed_subscription(session_factory, balance="100.00", locked="20.00")
    await _act(session_factory, pause_subscription, seed.subscription_id, today=RENEWED_ON, notify=notifier)

    sub = await _act(session_factory, resume_subscription, seed.subscription_id,
                     today=RENEWED_ON, notify=notifier)

    assert sub.status == "ACTIVE"
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("100.00"), Decimal("20.00"))
    pending = [t for t in await wallet_transactions_for(session_factory, seed.subscription_id)
               if t.transaction_status == "PENDING"]
    assert len(pending) == 1
    assert notifier.messages()[-1] == notifications.MSG_ACTION_CONFIRMED["ACTIVE"]


@pytest.mark.asyncio
async def test_resume_needs_funds_for_next_charge(session_factory):
    seed = await seed_subscription(
        session_factory, status="PAUSED", balance="10.00", locked="0.00", with_reservation=False,
    )

    with pytest.raises(InsufficientWalletBalance):
        await _act(session_factory, resume_subscription, seed.subscription_id, today=RENEWED_ON)

    assert (await get(session_factory, Subscription, seed.subscription_id)).status == "PAUSED"


@pytest.mark.asyncio
async def test_resume_after_next_cycle_pause_defers_lock_to_renewal(session_factory, notifier):
    seed = await seed_subscription(session_factory, balance="30.00", locked="20.00")
    await WalletRenewalHandler(session_factory, notifier).process(seed.subscription_id, RENEWED_ON)
    assert (await get(session_factory, Subscription, seed.subscription_id)).status == "PAUSED"

    await _act(session_factory, resume_subscription, seed.subscription_id, today=RENEWED_ON)

    sub = await get(session_factory, Subscription, seed.subscription_id)
    assert sub.status == "ACTIVE"
    assert sub.renewal_date == RENEWED_ON
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("10.00"), Decimal("0.00"))


# ── Subscribe ──────────────────────────────────────────────

async def _subscribe(session_factory, seed, payment_method="WALLET", notify=None):
    async with session_factory() as db:
        return await create_subscription(
            db, seed.customer_id, seed.plan_id, payment_method, "House 7, Road 2, Banani",
            today=RENEWED_ON, notify=notify,
        )


@pytest.mark.asyncio
async def test_subscribe_with_wallet_locks_first_payment(session_factory, notifier):
    seed = await seed_subscription(session_factory, balance="50.00", locked="0.00", with_reservation=False)

    sub = await _subscribe(session_factory, seed, notify=notifier)

    assert sub.status == "ACTIVE"
    assert sub.renewal_date == date(2026, 4, 10)
    assert Decimal(sub.plan_price) == Decimal("20.00")
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("50.00"), Decimal("20.00"))
    [txn] = await wallet_transactions_for(session_factory, sub.id)
    assert (txn.transaction_type, txn.transaction_status) == ("PURCHASE", "PENDING")
    assert notifier.messages() == ["🎉 You are subscribed to Milk Plan. First renewal on Apr 10, 2026."]


@pytest.mark.asyncio
async def test_subscribe_without_funds_leaves_nothing_behind(session_factory):
    seed = await seed_subscription(session_factory, balance="10.00", locked="0.00", with_reservation=False)

    with pytest.raises(InsufficientWalletBalance):
        await _subscribe(session_factory, seed)

    rows = await all_rows(session_factory, Subscription, customer_id=seed.customer_id)
    assert len(rows) == 1  # only the seeded one


@pytest.mark.asyncio
async def test_subscribe_with_wallet_requires_wallet(session_factory):
    seed = await seed_subscription(session_factory, payment_method="COD", with_wallet=False)

    with pytest.raises(WalletNotFound):
        await _subscribe(session_factory, seed, payment_method="WALLET")
    sub = await _subscribe(session_factory, seed, payment_method="COD")
    assert sub.payment_method == "COD"


@pytest.mark.asyncio
async def test_subscribe_to_non_subscription_product_rejected(session_factory):
    seed = await seed_subscription(session_factory, is_subscription_product=False)

    with pytest.raises(ProductNotSubscribable):
        await _subscribe(session_factory, seed)


@pytest.mark.asyncio
async def test_subscribe_then_renew_end_to_end(session_factory, notifier):
    seed = await seed_subscription(
        session_factory, status="CANCELLED", balance="100.00", locked="0.00", with_reservation=False,
    )
    sub = await _subscribe(session_factory, seed, notify=notifier)

    job = SubscriptionRenewalJob(session_factory, RenewalConfig(CONCURRENT_BATCHES=1), notify=notifier)
    await job.renew_subscriptions(date(2026, 3, 20))
    assert await orders_for(session_factory, sub.id) == []

    summary = await job.renew_subscriptions(date(2026, 4, 10))

    assert summary.successful == 1
    assert len(await orders_for(session_factory, sub.id)) == 1
    assert await get_wallet(session_factory, seed.wallet_id) == (Decimal("80.00"), Decimal("20.00"))
    [delivery] = await deliveries_for(session_factory, sub.id)
    assert delivery.delivery_date == date(2026, 5, 1)
    assert (await get(session_factory, SubscriptionDelivery, delivery.id)).status == "CONFIRMED"
