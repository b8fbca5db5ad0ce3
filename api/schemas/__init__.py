"""Pydantic schemas for API request/response models."""

from __future__ import annotations
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────

class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PaymentMethod(str, Enum):
    WALLET = "WALLET"
    COD = "COD"


class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class DeliveryStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# ── Subscription Schemas ───────────────────────────────────

class SubscriptionCreate(BaseModel):
    customer_id: uuid.UUID
    plan_id: uuid.UUID
    payment_method: PaymentMethod
    shipping_address: str = Field(..., min_length=5, max_length=1000)


class SubscriptionAction(BaseModel):
    """Body for pause / resume / cancel. ``customer_id`` scopes the action to its owner."""
    customer_id: uuid.UUID | None = None


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    plan_id: uuid.UUID
    status: SubscriptionStatus
    payment_method: PaymentMethod
    start_date: date
    renewal_date: date
    plan_price: Decimal
    shipping_address: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DeliveryResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    cycle_date: date
    delivery_date: date
    status: DeliveryStatus

    class Config:
        from_attributes = True


class SubscriptionDetailResponse(SubscriptionResponse):
    frequency: Frequency | None = None
    next_delivery: DeliveryResponse | None = None
    can_pause_or_cancel: bool = True
    days_until_delivery: int | None = None


# ── Renewal Run Schemas ────────────────────────────────────

class RenewalFailure(BaseModel):
    subscription_id: uuid.UUID
    attempts: int
    error: str


class RenewalRunResponse(BaseModel):
    run_date: date
    total: int
    successful: int
    failed: int
    paused: int
    skipped: int
    failures: list[RenewalFailure] = []
