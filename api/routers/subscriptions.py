"""Subscription API endpoints — subscribe, inspect, pause, resume, cancel."""

import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db.database import get_db
from schemas import (
    SubscriptionCreate, SubscriptionAction, SubscriptionResponse,
    SubscriptionDetailResponse, DeliveryResponse, Frequency,
)
from services.errors import SubscriptionError
from services.subscription_actions import (
    can_pause_or_cancel, cancel_subscription, create_subscription,
    pause_subscription, resume_subscription,
)
from services.scheduling import store_today
from services.subscription_queries import load_subscription

router = APIRouter()


def _http_error(e: SubscriptionError) -> HTTPException:
    return HTTPException(status_code=int(e.status_code), detail=e.to_dict())


@router.post("/", response_model=SubscriptionResponse, status_code=201)
async def subscribe(data: SubscriptionCreate, db: AsyncSession = Depends(get_db)):
    """Subscribe a customer to a plan. WALLET subscriptions lock the first payment."""
    try:
        return await create_subscription(
            db, data.customer_id, data.plan_id, data.payment_method.value, data.shipping_address,
            today=store_today(settings.RENEWAL_TIMEZONE),
        )
    except SubscriptionError as e:
        raise _http_error(e)


@router.get("/{subscription_id}", response_model=SubscriptionDetailResponse)
async def get_subscription(subscription_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Subscription with its next committed delivery and whether it can still be paused."""
    try:
        subscription = await load_subscription(db, subscription_id)
    except SubscriptionError as e:
        raise _http_error(e)

    today = store_today(settings.RENEWAL_TIMEZONE)
    check = await can_pause_or_cancel(db, subscription.id, today, settings.SUBSCRIPTION_BUFFER_DAYS)
    response = SubscriptionDetailResponse.model_validate(subscription)
    response.frequency = Frequency(subscription.plan.frequency)
    response.can_pause_or_cancel = check.can_proceed
    response.days_until_delivery = check.days_left
    if check.next_delivery is not None:
        response.next_delivery = DeliveryResponse.model_validate(check.next_delivery)
    return response


@router.post("/{subscription_id}/pause", response_model=SubscriptionResponse)
async def pause(
    subscription_id: uuid.UUID,
    data: SubscriptionAction | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Pause an ACTIVE subscription; cancels and refunds the upcoming delivery."""
    try:
        return await pause_subscription(
            db, subscription_id,
            today=store_today(settings.RENEWAL_TIMEZONE),
            buffer_days=settings.SUBSCRIPTION_BUFFER_DAYS,
            customer_id=data.customer_id if data else None,
        )
    except SubscriptionError as e:
        raise _http_error(e)


@router.post("/{subscription_id}/resume", response_model=SubscriptionResponse)
async def resume(
    subscription_id: uuid.UUID,
    data: SubscriptionAction | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Resume a PAUSED subscription."""
    try:
        return await resume_subscription(
            db, subscription_id,
            today=store_today(settings.RENEWAL_TIMEZONE),
            buffer_days=settings.SUBSCRIPTION_BUFFER_DAYS,
            customer_id=data.customer_id if data else None,
        )
    except SubscriptionError as e:
        raise _http_error(e)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel(
    subscription_id: uuid.UUID,
    data: SubscriptionAction | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Cancel a subscription for good."""
    try:
        return await cancel_subscription(
            db, subscription_id,
            today=store_today(settings.RENEWAL_TIMEZONE),
            buffer_days=settings.SUBSCRIPTION_BUFFER_DAYS,
            customer_id=data.customer_id if data else None,
        )
    except SubscriptionError as e:
        raise _http_error(e)
