"""Order, OrderItem, OrderTracking and Payment ORM models."""

import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Integer, Boolean, DateTime, ForeignKey, Text,
    Enum as PgEnum,
)
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base
from models.base import Money, utcnow

ORDER_STATUSES = ("CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED")
PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED", "REFUNDED")
PAYMENT_METHODS = ("WALLET", "COD")


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("customers.id"), nullable=False, index=True)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("subscriptions.id"), index=True)

    status: Mapped[str] = mapped_column(
        PgEnum(*ORDER_STATUSES, name="order_status"),
        default="CONFIRMED",
    )
    payment_status: Mapped[str] = mapped_column(
        PgEnum(*PAYMENT_STATUSES, name="payment_status"),
        default="PENDING",
    )
    payment_method: Mapped[str] = mapped_column(
        PgEnum(*PAYMENT_METHODS, name="payment_method"),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_subscription: Mapped[bool] = mapped_column(Boolean, default=False)
    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    # Snapshot of the product at order time
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_type: Mapped[str] = mapped_column(String(20), nullable=False)
    package_size: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)


class OrderTracking(Base):
    """Append-only audit trail of order status changes."""

    __tablename__ = "order_tracking"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        PgEnum(*ORDER_STATUSES, name="order_status"),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    actor_type: Mapped[str] = mapped_column(String(20), default="SYSTEM")  # SYSTEM, CUSTOMER, ADMIN
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_method: Mapped[str] = mapped_column(
        PgEnum(*PAYMENT_METHODS, name="payment_method"),
        nullable=False,
    )
    payment_status: Mapped[str] = mapped_column(
        PgEnum(*PAYMENT_STATUSES, name="payment_status"),
        default="PENDING",
    )
    transaction_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    wallet_transaction_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("wallet_transactions.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
