"""
Payment ledger - appends payment rows and derives the order payment status.

``recompute_payment_status`` is the only code path that writes
``Order.payment_status``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from domain.common.exceptions import OrderTotalNotFinalException
from domain.order.entity import Order, OrderPaymentStatus
from domain.order.events import OrderPaymentStatusChanged
from domain.order.repository import OrderRepository
from .entity import GatewayInfo, Payment, PaymentMethod, PaymentStatus, generate_payment_code
from .events import PaymentRecorded
from .repository import PaymentRepository


def derive_payment_status(completed_total: Decimal, order_total: Decimal) -> OrderPaymentStatus:
    """Map the completed sum against the order total.

    Overpayment is still PAID; there is no separate overpaid state.
    """
    if completed_total <= 0:
        return OrderPaymentStatus.PENDING
    if completed_total >= order_total:
        return OrderPaymentStatus.PAID
    return OrderPaymentStatus.PARTIAL_PAID


class PaymentLedger:
    """Records payment attempts and keeps the order payment status in sync."""

    def __init__(self, payment_repository: PaymentRepository, order_repository: OrderRepository):
        self.payment_repository = payment_repository
        self.order_repository = order_repository
        self.events: List = []

    async def record_payment(
        self,
        order: Order,
        amount: Decimal,
        method: PaymentMethod,
        status: PaymentStatus,
        *,
        gateway: Optional[GatewayInfo] = None,
        note: Optional[str] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Payment:
        """Append a payment row for ``order``.

        Does not touch the order; call ``recompute_payment_status`` afterwards.
        """
        now = now or datetime.now(timezone.utc)
        payment = Payment(
            id=None,
            code=generate_payment_code(now),
            order_id=order.id,
            amount=amount,
            method=method,
            status=status,
            gateway=gateway,
            note=note,
            created_by=actor,
            created_at=now,
            updated_at=now,
            paid_at=now if status == PaymentStatus.COMPLETED else None,
        )
        created = await self.payment_repository.create(payment)
        self.events.append(PaymentRecorded(
            order_id=created.order_id,
            payment_code=created.code,
            method=created.method.value,
            amount=str(created.amount),
            provider_ref=created.txn_ref,
            status=created.status.value,
        ))
        return created

    async def recompute_payment_status(self, order: Order) -> OrderPaymentStatus:
        """Derive and persist ``order.payment_status`` from completed payments."""
        if not order.has_final_total:
            raise OrderTotalNotFinalException(order.code)
        completed = await self.payment_repository.sum_completed_by_order(order.id)
        status = derive_payment_status(completed, order.total)
        previous = order.payment_status
        if order.apply_payment_status(status):
            await self.order_repository.update(order)
            self.events.append(OrderPaymentStatusChanged(
                order_id=order.id,
                order_code=order.code,
                from_status=previous.value,
                to_status=status.value,
            ))
        return status

    def clear_events(self) -> List:
        """Drain and return collected domain events"""
        events = self.events.copy()
        self.events.clear()
        return events
