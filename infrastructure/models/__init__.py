"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, OrderHistoryModel
from .payment import PaymentModel
from .voucher import VoucherModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "OrderHistoryModel",
    "PaymentModel",
    "VoucherModel",
]
