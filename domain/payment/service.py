"""
Payment domain service - payment status moves and their events.
"""
from typing import List, Optional

from .entity import GatewayInfo, Payment, PaymentStatus
from .repository import PaymentRepository
from .events import PaymentCompleted, PaymentFailed, PaymentRefunded
from domain.common.exceptions import (
    DomainValidationException,
    OrderClosedException,
    PaymentNotFoundException,
)
from domain.order.entity import Order


class PaymentDomainService:
    """
    Payment domain service

    Responsibilities:
    1. guard payment intake against closed orders
    2. apply payment status moves (entity enforces the allowed set)
    3. collect domain events
    """

    def __init__(self, payment_repository: PaymentRepository):
        self.payment_repository = payment_repository
        self.events: List = []

    @staticmethod
    def ensure_order_accepts_payments(order: Order) -> None:
        if order.is_closed:
            raise OrderClosedException(order.code, order.status.value)

    async def get_payment(self, payment_id: int) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundException(payment_id)
        return payment

    async def complete(self, payment: Payment, gateway: Optional[GatewayInfo] = None) -> Payment:
        payment.mark_completed(gateway)
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentCompleted(
            order_id=updated.order_id,
            payment_code=updated.code,
            method=updated.method.value,
            amount=str(updated.amount),
            provider_ref=updated.gateway.transaction_no if updated.gateway else None,
        ))
        return updated

    async def fail(
        self,
        payment: Payment,
        reason: Optional[str] = None,
        gateway: Optional[GatewayInfo] = None,
    ) -> Payment:
        payment.mark_failed(reason, gateway)
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentFailed(
            order_id=updated.order_id,
            payment_code=updated.code,
            method=updated.method.value,
            amount=str(updated.amount),
            provider_ref=updated.gateway.transaction_no if updated.gateway else None,
            reason=reason,
        ))
        return updated

    async def refund(self, payment: Payment, reason: Optional[str] = None) -> Payment:
        payment.mark_refunded(reason)
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentRefunded(
            order_id=updated.order_id,
            payment_code=updated.code,
            method=updated.method.value,
            amount=str(updated.amount),
            reason=reason,
        ))
        return updated

    async def change_status(
        self,
        payment: Payment,
        target: PaymentStatus,
        reason: Optional[str] = None,
    ) -> Payment:
        """Manual status change entry point used by staff."""
        if target == PaymentStatus.COMPLETED:
            return await self.complete(payment)
        if target == PaymentStatus.FAILED:
            return await self.fail(payment, reason)
        if target == PaymentStatus.REFUNDED:
            return await self.refund(payment, reason)
        raise DomainValidationException(
            f"Cannot move payment back to {target.value}",
            field="status",
        )

    def clear_events(self) -> List:
        """Drain and return collected domain events"""
        events = self.events.copy()
        self.events.clear()
        return events
