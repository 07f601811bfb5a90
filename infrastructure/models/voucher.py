"""
Voucher database model.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from datetime import datetime, timezone

from .base import Base


class VoucherModel(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, comment="PERCENTAGE/FIXED")
    value = Column(Numeric(precision=15, scale=2), nullable=False)
    quantity = Column(Integer, nullable=False, comment="Total allowed uses")
    used_count = Column(Integer, nullable=False, default=0, comment="Uses consumed")
    min_order_value = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    max_discount = Column(Numeric(precision=15, scale=2), nullable=True, comment="Cap for percentage vouchers")
    status = Column(String(20), nullable=False, default="ACTIVE")
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<VoucherModel(code='{self.code}', used={self.used_count}/{self.quantity})>"
