"""Order domain exports."""
from .entity import (
    Order,
    OrderHistoryEntry,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    ShippingAddress,
)
from .repository import OrderRepository

__all__ = [
    "Order",
    "OrderHistoryEntry",
    "OrderItem",
    "OrderPaymentStatus",
    "OrderStatus",
    "ShippingAddress",
    "OrderRepository",
]
