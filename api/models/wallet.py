"""Wallet and WalletTransaction ORM models — prepaid balance and its ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Text, DateTime, ForeignKey, CheckConstraint, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from db.database import Base
from models.base import Money, utcnow

WALLET_TRANSACTION_TYPES = ("PURCHASE", "REFUND")
WALLET_TRANSACTION_STATUSES = ("PENDING", "COMPLETED", "REFUNDED")


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("locked_balance >= 0", name="ck_wallet_locked_non_negative"),
        CheckConstraint("locked_balance <= balance", name="ck_wallet_locked_within_balance"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("customers.id"), unique=True, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    # Funds reserved for the next renewal; always a subset of balance.
    locked_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="wallet")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("wallets.id"), nullable=False, index=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("orders.id"), unique=True)
    # Correlates a reservation with the subscription cycle it pays for.
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("subscriptions.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        PgEnum(*WALLET_TRANSACTION_TYPES, name="wallet_transaction_type"),
        nullable=False,
    )
    transaction_status: Mapped[str] = mapped_column(
        PgEnum(*WALLET_TRANSACTION_STATUSES, name="wallet_transaction_status"),
        default="PENDING",
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    reference: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
