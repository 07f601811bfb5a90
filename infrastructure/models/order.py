"""
Order database models - SQLAlchemy ORM mappings.
Infrastructure detail only; the business rules live in domain.order.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    Order (bill) table

    ``version`` backs the optimistic concurrency check; every conditional
    UPDATE bumps it.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, index=True, nullable=False, comment="Order code DH<yymmdd><hex>")
    customer_id = Column(String(64), nullable=True, index=True, comment="Customer id (token subject)")
    staff_id = Column(String(64), nullable=True, comment="Staff who placed the order")

    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="Sum of line totals")
    discount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="Voucher discount")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="Amount due")
    voucher_code = Column(String(50), nullable=True, comment="Applied voucher")

    payment_method = Column(String(20), nullable=False, comment="CASH/BANK_TRANSFER/VNPAY/COD")
    status = Column(String(20), nullable=False, default="CHO_XAC_NHAN", index=True, comment="Order status")
    payment_status = Column(String(20), nullable=False, default="PENDING", index=True, comment="Derived payment status")
    version = Column(Integer, nullable=False, default=0, comment="Optimistic lock version")

    # Shipping address snapshot
    recipient_name = Column(String(100), nullable=True)
    recipient_phone = Column(String(20), nullable=True)
    address_line = Column(String(255), nullable=True)
    ward = Column(String(100), nullable=True)
    district = Column(String(100), nullable=True)
    province = Column(String(100), nullable=True)

    note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItemModel.id",
    )
    history = relationship(
        "OrderHistoryModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderHistoryModel.id",
    )

    __table_args__ = (
        Index("ix_orders_customer_status", "customer_id", "status"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, code='{self.code}', status='{self.status}', version={self.version})>"


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, comment="Product reference")
    variant_id = Column(String(64), nullable=True, comment="Product variant reference")
    name = Column(String(255), nullable=True, comment="Product name at order time")
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="Unit price at order time")

    order = relationship("OrderModel", back_populates="items")


class OrderHistoryModel(Base):
    """Append-only audit trail of order status changes"""
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    note = Column(Text, nullable=True)
    actor = Column(String(64), nullable=True, comment="User who triggered the change")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    order = relationship("OrderModel", back_populates="history")
