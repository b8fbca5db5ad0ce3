from models.customer import Customer
from models.wallet import Wallet, WalletTransaction
from models.product import Product, StockTransaction
from models.order import Order, OrderItem, OrderTracking, Payment
from models.subscription import Subscription, SubscriptionPlan, SubscriptionDelivery

__all__ = [
    "Customer", "Wallet", "WalletTransaction",
    "Product", "StockTransaction",
    "Order", "OrderItem", "OrderTracking", "Payment",
    "Subscription", "SubscriptionPlan", "SubscriptionDelivery",
]
