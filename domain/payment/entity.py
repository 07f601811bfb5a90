"""
Payment domain entity - one row per payment attempt against an order.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class PaymentMethod(str, Enum):
    """Payment method enum"""
    CASH = "CASH"                    # paid at the counter
    BANK_TRANSFER = "BANK_TRANSFER"  # manual bank transfer, confirmed by staff
    VNPAY = "VNPAY"                  # VNPay gateway redirect
    COD = "COD"                      # cash on delivery


class PaymentStatus(str, Enum):
    """Payment status enum"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Allowed payment status moves; everything else is rejected.
_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC (naive values are assumed UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_payment_code(now: Optional[datetime] = None) -> str:
    """Build a payment code like ``PAY2410A1B2C3``."""
    now = now or datetime.now(timezone.utc)
    return f"PAY{now:%y%m}{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class GatewayInfo:
    """Gateway metadata, only present on gateway payments."""

    provider: str
    txn_ref: str
    transaction_no: Optional[str] = None
    response_code: Optional[str] = None
    transaction_status: Optional[str] = None
    bank_code: Optional[str] = None
    bank_tran_no: Optional[str] = None
    card_type: Optional[str] = None
    pay_date: Optional[datetime] = None
    order_info: Optional[str] = None

    def merged(self, other: "GatewayInfo") -> "GatewayInfo":
        """Fill missing values from ``other`` (callback data wins when present)."""
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None and f.name not in {"provider", "txn_ref"}
        }
        return replace(self, **updates)


@dataclass
class Payment:
    """
    Payment aggregate - owned by an Order.

    Rules:
    1. amount must be positive
    2. status moves follow _PAYMENT_TRANSITIONS
    3. gateway metadata is only carried by gateway payments
    4. payments are never deleted; refunds are a status, not a removal
    """

    id: Optional[int]
    code: str
    order_id: int
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    gateway: Optional[GatewayInfo] = None
    note: Optional[str] = None
    created_by: Optional[str] = None
    failure_reason: Optional[str] = None
    version: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount is None or Decimal(self.amount) <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        self.amount = Decimal(self.amount)
        if self.gateway is not None and self.method != PaymentMethod.VNPAY:
            raise DomainValidationException(
                "Gateway metadata is only allowed on gateway payments",
                field="gateway",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    @property
    def txn_ref(self) -> Optional[str]:
        return self.gateway.txn_ref if self.gateway else None

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in _PAYMENT_TRANSITIONS[self.status]

    def _ensure_transition(self, target: PaymentStatus) -> None:
        if not self.can_transition_to(target):
            raise DomainValidationException(
                f"Cannot move payment from {self.status.value} to {target.value}",
                field="status",
                details={"current": self.status.value, "target": target.value},
            )

    def mark_completed(self, gateway: Optional[GatewayInfo] = None, *, now: Optional[datetime] = None) -> None:
        """PENDING -> COMPLETED"""
        self._ensure_transition(PaymentStatus.COMPLETED)
        now = now or datetime.now(timezone.utc)
        self.status = PaymentStatus.COMPLETED
        if gateway is not None:
            self.gateway = self.gateway.merged(gateway) if self.gateway else gateway
        self.paid_at = now
        self.updated_at = now
        self.failure_reason = None

    def mark_failed(
        self,
        reason: Optional[str] = None,
        gateway: Optional[GatewayInfo] = None,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        """PENDING -> FAILED"""
        self._ensure_transition(PaymentStatus.FAILED)
        self.status = PaymentStatus.FAILED
        if gateway is not None:
            self.gateway = self.gateway.merged(gateway) if self.gateway else gateway
        self.failure_reason = reason
        self.updated_at = now or datetime.now(timezone.utc)

    def mark_refunded(self, reason: Optional[str] = None, *, now: Optional[datetime] = None) -> None:
        """COMPLETED -> REFUNDED"""
        self._ensure_transition(PaymentStatus.REFUNDED)
        now = now or datetime.now(timezone.utc)
        self.status = PaymentStatus.REFUNDED
        if reason:
            self.note = reason
        self.refunded_at = now
        self.updated_at = now
