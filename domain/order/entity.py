"""
Order aggregate root - line items, totals, status and the audit history.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentMethod


class OrderStatus(str, Enum):
    """Order (bill) status enum"""
    CHO_XAC_NHAN = "CHO_XAC_NHAN"        # awaiting confirmation
    CHO_GIAO_HANG = "CHO_GIAO_HANG"      # confirmed, awaiting shipment
    DANG_VAN_CHUYEN = "DANG_VAN_CHUYEN"  # in transit
    DA_GIAO_HANG = "DA_GIAO_HANG"        # delivered
    HOAN_THANH = "HOAN_THANH"            # completed
    DA_HUY = "DA_HUY"                    # cancelled


class OrderPaymentStatus(str, Enum):
    """Order-level payment status, derived from completed payments"""
    PENDING = "PENDING"
    PARTIAL_PAID = "PARTIAL_PAID"
    PAID = "PAID"
    FAILED = "FAILED"


CLOSED_STATUSES = frozenset({OrderStatus.HOAN_THANH, OrderStatus.DA_HUY})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_order_code(now: Optional[datetime] = None) -> str:
    """Build an order code like ``DH241019A1B2C3``."""
    now = now or datetime.now(timezone.utc)
    return f"DH{now:%y%m%d}{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class OrderItem:
    """Line item; the unit price is captured at order time."""

    product_id: str
    quantity: int
    unit_price: Decimal
    name: Optional[str] = None
    variant_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Quantity must be positive: {self.quantity}",
                field="quantity",
            )
        if Decimal(self.unit_price) < 0:
            raise DomainValidationException(
                f"Unit price cannot be negative: {self.unit_price}",
                field="unit_price",
            )

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


@dataclass(frozen=True)
class ShippingAddress:
    """Snapshot of the delivery address at order time."""

    recipient_name: str
    phone: str
    address_line: str
    ward: Optional[str] = None
    district: Optional[str] = None
    province: Optional[str] = None


@dataclass(frozen=True)
class OrderHistoryEntry:
    """Audit entry, never mutated once appended."""

    status: OrderStatus
    created_at: datetime
    note: Optional[str] = None
    actor: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Order:
    """
    Order aggregate root

    Rules:
    1. at least one line item
    2. total == subtotal - discount, discount never exceeds subtotal
    3. status and payment_status only change through the state machine and
       the payment ledger respectively
    4. history only grows and its last entry matches the current status
    """

    id: Optional[int]
    code: str
    customer_id: Optional[str]
    items: List[OrderItem]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    payment_method: PaymentMethod
    status: OrderStatus = OrderStatus.CHO_XAC_NHAN
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    staff_id: Optional[str] = None
    voucher_code: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    note: Optional[str] = None
    history: List[OrderHistoryEntry] = field(default_factory=list)
    version: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def __post_init__(self):
        self._validate_items()
        self._validate_amounts()
        self._normalize_timestamps()

    def _validate_items(self) -> None:
        if not self.items:
            raise DomainValidationException("Order must contain at least one item", field="items")

    def _validate_amounts(self) -> None:
        self.subtotal = Decimal(self.subtotal)
        self.discount = Decimal(self.discount or 0)
        self.total = Decimal(self.total)
        if self.discount < 0 or self.discount > self.subtotal:
            raise DomainValidationException(
                f"Invalid discount {self.discount} for subtotal {self.subtotal}",
                field="discount",
            )
        if self.total != self.subtotal - self.discount:
            raise DomainValidationException(
                f"Total {self.total} does not match subtotal {self.subtotal} - discount {self.discount}",
                field="total",
            )

    def _normalize_timestamps(self) -> None:
        for name in (
            "created_at", "updated_at", "confirmed_at", "shipped_at",
            "delivered_at", "completed_at", "cancelled_at",
        ):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @classmethod
    def place(
        cls,
        *,
        customer_id: Optional[str],
        items: List[OrderItem],
        payment_method: PaymentMethod,
        discount: Decimal = Decimal("0"),
        voucher_code: Optional[str] = None,
        shipping_address: Optional[ShippingAddress] = None,
        staff_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        """Create a new order in CHO_XAC_NHAN with its first history entry."""
        now = now or datetime.now(timezone.utc)
        subtotal = sum((item.line_total for item in items), Decimal("0"))
        discount = min(Decimal(discount), subtotal)
        total = subtotal - discount
        if total <= 0:
            raise DomainValidationException(
                f"Order total must be positive: {total}",
                field="total",
            )
        return cls(
            id=None,
            code=generate_order_code(now),
            customer_id=customer_id,
            items=list(items),
            subtotal=subtotal,
            discount=discount,
            total=total,
            payment_method=payment_method,
            staff_id=staff_id,
            voucher_code=voucher_code,
            shipping_address=shipping_address,
            note=note,
            history=[
                OrderHistoryEntry(
                    status=OrderStatus.CHO_XAC_NHAN,
                    note="Order placed",
                    actor=staff_id or customer_id,
                    created_at=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    @property
    def is_fully_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID

    @property
    def has_final_total(self) -> bool:
        return self.total is not None and self.total > 0

    def apply_payment_status(self, status: OrderPaymentStatus, *, now: Optional[datetime] = None) -> bool:
        """Store a recomputed payment status. Only PaymentLedger calls this."""
        if status == self.payment_status:
            return False
        self.payment_status = status
        self.updated_at = now or datetime.now(timezone.utc)
        return True
