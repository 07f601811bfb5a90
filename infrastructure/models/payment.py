"""
Payment database model - SQLAlchemy ORM mapping.
Infrastructure detail only; the business rules live in domain.payment.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    One row per payment attempt against an order.

    Gateway columns are only filled for VNPAY payments. A gateway transaction
    number can be recorded once per provider; declines that carry no real
    number store NULL there. Updates are conditional on ``version``.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, comment="Payment code PAY<yymm><hex>")
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Amount in VND")
    method = Column(String(20), nullable=False, comment="CASH/BANK_TRANSFER/VNPAY/COD")
    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="PENDING/COMPLETED/FAILED/REFUNDED")

    # Gateway metadata
    provider = Column(String(20), nullable=True, comment="Gateway name")
    txn_ref = Column(String(100), unique=True, nullable=True, comment="Merchant transaction reference")
    transaction_no = Column(String(100), nullable=True, comment="Gateway transaction number")
    response_code = Column(String(10), nullable=True)
    transaction_status = Column(String(10), nullable=True)
    bank_code = Column(String(20), nullable=True)
    bank_tran_no = Column(String(100), nullable=True)
    card_type = Column(String(20), nullable=True)
    pay_date = Column(DateTime(timezone=True), nullable=True, comment="Gateway pay date")
    order_info = Column(String(255), nullable=True)

    note = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    failure_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0, comment="Optimistic lock version")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "transaction_no", name="uq_payments_provider_transaction_no"),
        Index("ix_payments_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, code='{self.code}', order_id={self.order_id}, "
            f"method='{self.method}', amount={self.amount}, status='{self.status}')>"
        )
