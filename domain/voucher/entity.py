"""
Voucher entity - discount codes applied at checkout.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, VoucherNotApplicableException


class VoucherType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class VoucherStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Voucher:
    """
    Voucher

    Rules:
    1. percentage vouchers take 0 < value <= 100 and are capped by max_discount
    2. fixed vouchers discount ``value`` but never more than the order value
    3. usable only while ACTIVE, inside [start_at, end_at], with usage left,
       and for orders of at least min_order_value
    """

    id: Optional[int]
    code: str
    name: str
    type: VoucherType
    value: Decimal
    quantity: int
    start_at: datetime
    end_at: datetime
    used_count: int = 0
    min_order_value: Decimal = Decimal("0")
    max_discount: Optional[Decimal] = None
    status: VoucherStatus = VoucherStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.code = (self.code or "").strip().upper()
        if not self.code:
            raise DomainValidationException("Voucher code is required", field="code")
        self.value = Decimal(self.value)
        self.min_order_value = Decimal(self.min_order_value or 0)
        if self.max_discount is not None:
            self.max_discount = Decimal(self.max_discount)
        if self.value <= 0:
            raise DomainValidationException(f"Voucher value must be positive: {self.value}", field="value")
        if self.type == VoucherType.PERCENTAGE and self.value > 100:
            raise DomainValidationException(
                f"Percentage voucher cannot exceed 100: {self.value}", field="value"
            )
        if self.quantity < 0 or self.used_count < 0:
            raise DomainValidationException("Voucher quantity cannot be negative", field="quantity")
        self.start_at = _ensure_utc(self.start_at)
        self.end_at = _ensure_utc(self.end_at)
        if self.end_at <= self.start_at:
            raise DomainValidationException("Voucher end date must be after start date", field="end_at")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def remaining(self) -> int:
        return max(self.quantity - self.used_count, 0)

    def ensure_applicable(self, order_value: Decimal, *, now: Optional[datetime] = None) -> None:
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        if self.status != VoucherStatus.ACTIVE:
            raise VoucherNotApplicableException(self.code, "voucher is not active")
        if now < self.start_at:
            raise VoucherNotApplicableException(self.code, "voucher is not yet valid")
        if now > self.end_at:
            raise VoucherNotApplicableException(self.code, "voucher has expired")
        if self.remaining <= 0:
            raise VoucherNotApplicableException(self.code, "voucher usage limit reached")
        if Decimal(order_value) < self.min_order_value:
            raise VoucherNotApplicableException(
                self.code, f"order value below minimum {self.min_order_value}"
            )

    def compute_discount(self, order_value: Decimal) -> Decimal:
        """Discount in display units, rounded to whole VND."""
        order_value = Decimal(order_value)
        if self.type == VoucherType.PERCENTAGE:
            discount = (order_value * self.value / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            if self.max_discount is not None:
                discount = min(discount, self.max_discount)
        else:
            discount = self.value
        return min(discount, order_value)
