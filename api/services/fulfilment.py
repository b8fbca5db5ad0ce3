"""
Order & delivery materialization for subscription cycles.

Every function here works inside the caller's transaction: it adds and
flushes rows on the given session and never commits.
"""

import logging
import random
import string
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from models.customer import Customer
from models.order import Order, OrderItem, OrderTracking, Payment
from models.product import Product, StockTransaction
from models.subscription import Subscription, SubscriptionDelivery
from services import notifications
from services.errors import InsufficientStock
from services.money import to_money
from services.notifications import NotificationQueue
from services.scheduling import DEFAULT_DELIVERY_BUFFER_DAYS, next_delivery_date

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    """Human-readable order number: SUB-YYMMDD-XXXXXX."""
    date_part = datetime.now(timezone.utc).strftime("%y%m%d")
    rand_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"SUB-{date_part}-{rand_part}"


def generate_transaction_ref(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:20].upper()}"


async def create_order_with_items(
    db: AsyncSession,
    subscription: Subscription,
    customer: Customer,
    product: Product,
    price: Decimal,
    payment_method: str,
) -> Order:
    """Order + one item snapshot + CONFIRMED tracking event."""
    order = Order(
        order_number=generate_order_number(),
        customer_id=customer.id,
        subscription_id=subscription.id,
        status="CONFIRMED",
        payment_status="COMPLETED" if payment_method == "WALLET" else "PENDING",
        payment_method=payment_method,
        total_amount=to_money(price),
        is_subscription=True,
        shipping_address=subscription.shipping_address,
    )
    db.add(order)
    await db.flush()

    db.add(OrderItem(
        order_id=order.id,
        product_id=product.id,
        quantity=1,
        unit_price=to_money(product.unit_price),
        unit_type=product.unit_type,
        package_size=product.package_size,
        subtotal=to_money(product.unit_price) * product.package_size,
    ))
    db.add(OrderTracking(
        order_id=order.id,
        status="CONFIRMED",
        description=(
            "Order confirmed and payment completed via wallet"
            if payment_method == "WALLET"
            else "Order confirmed, payment pending for Cash on Delivery"
        ),
    ))
    await db.flush()
    return order


async def create_payment(
    db: AsyncSession,
    order: Order,
    status: str,
    wallet_transaction_id: uuid.UUID | None = None,
) -> Payment:
    payment = Payment(
        order_id=order.id,
        amount=order.total_amount,
        payment_method=order.payment_method,
        payment_status=status,
        transaction_ref=generate_transaction_ref(f"ORDER_{order.order_number}"),
        wallet_transaction_id=wallet_transaction_id,
    )
    db.add(payment)
    await db.flush()
    return payment


async def update_product_stock(db: AsyncSession, product: Product, order_id: uuid.UUID) -> StockTransaction:
    """Consume one package of stock and record the OUT movement."""
    quantity = product.package_size
    if product.stock_quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock for product {product.name}",
            available=product.stock_quantity, required=quantity,
        )
    product.stock_quantity -= quantity

    movement = StockTransaction(
        product_id=product.id,
        order_id=order_id,
        quantity=quantity,
        transaction_type="OUT",
        description=f"Stock reduced for subscription order {order_id}",
    )
    db.add(movement)
    await db.flush()
    return movement


async def restock_product(
    db: AsyncSession,
    product: Product,
    order_id: uuid.UUID,
    reason: str,
    quantity: int | None = None,
) -> StockTransaction:
    """Return ``quantity`` units (default one package) to stock and record the IN movement."""
    if quantity is None:
        quantity = product.package_size
    product.stock_quantity += quantity

    movement = StockTransaction(
        product_id=product.id,
        order_id=order_id,
        quantity=quantity,
        transaction_type="IN",
        description=f"Stock returned for order {order_id} ({reason})",
    )
    db.add(movement)
    await db.flush()
    return movement


async def create_subscription_delivery(
    db: AsyncSession,
    subscription: Subscription,
    order: Order,
    today: date,
    customer: Customer,
    payment_method: str,
    outbox: NotificationQueue,
    buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS,
) -> SubscriptionDelivery:
    """Schedule the cycle's delivery and queue the customer notice."""
    delivery_date = next_delivery_date(today, subscription.plan.frequency, buffer_days)
    delivery = SubscriptionDelivery(
        subscription_id=subscription.id,
        order_id=order.id,
        cycle_date=subscription.renewal_date,
        delivery_date=delivery_date,
        status="CONFIRMED",
    )
    db.add(delivery)
    await db.flush()

    template = (
        notifications.MSG_DELIVERY_SCHEDULED_WALLET
        if payment_method == "WALLET"
        else notifications.MSG_DELIVERY_SCHEDULED_COD
    )
    outbox.add(customer.telegram_id, template.format(date=delivery_date.strftime("%b %d, %Y")))
    logger.info(
        "Delivery scheduled: subscription=%s order=%s date=%s",
        subscription.id, order.order_number, delivery_date,
    )
    return delivery
