"""SubscriptionPlan, Subscription and SubscriptionDelivery ORM models."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import (
    String, Boolean, Date, DateTime, Text, ForeignKey, UniqueConstraint,
    Enum as PgEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from db.database import Base
from models.base import Money, utcnow

SUBSCRIPTION_STATUSES = ("ACTIVE", "PAUSED", "CANCELLED", "EXPIRED")
FREQUENCIES = ("WEEKLY", "MONTHLY")
DELIVERY_STATUSES = ("CONFIRMED", "DELIVERED", "CANCELLED")


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    frequency: Mapped[str] = mapped_column(
        PgEnum(*FREQUENCIES, name="subscription_frequency"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("customers.id"), nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum(*SUBSCRIPTION_STATUSES, name="subscription_status"),
        default="ACTIVE",
        index=True,
    )
    payment_method: Mapped[str] = mapped_column(
        PgEnum("WALLET", "COD", name="payment_method"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    renewal_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # Price of the reservation currently backing the next charge.
    plan_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)
    # Advisory per-row lock held by the renewal job.
    is_processing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Renewal date whose charge step has been applied.
    last_charged_for: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    customer = relationship("Customer", lazy="selectin")
    plan = relationship("SubscriptionPlan", lazy="selectin")


class SubscriptionDelivery(Base):
    __tablename__ = "subscription_deliveries"
    __table_args__ = (
        UniqueConstraint("subscription_id", "cycle_date", name="uq_delivery_per_cycle"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscriptions.id"), nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    cycle_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum(*DELIVERY_STATUSES, name="delivery_status"),
        default="CONFIRMED",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
