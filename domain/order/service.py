"""
Order domain service - checkout, status transitions and post-payment advance.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from domain.common.exceptions import (
    OrderNotFoundException,
    VoucherNotApplicableException,
    VoucherNotFoundException,
)
from domain.payment.entity import PaymentMethod
from domain.voucher.repository import VoucherRepository
from . import state_machine
from .entity import (
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    ShippingAddress,
)
from .events import OrderPlaced, OrderStatusChanged
from .repository import OrderRepository


# Status reached automatically once an order becomes fully paid.
_ADVANCE_WHEN_PAID = {
    OrderStatus.CHO_XAC_NHAN: OrderStatus.CHO_GIAO_HANG,
    OrderStatus.DA_GIAO_HANG: OrderStatus.HOAN_THANH,
}


class OrderDomainService:
    """
    Order domain service

    Responsibilities:
    1. price an order and consume its voucher at checkout
    2. run status transitions through the state machine and persist them
    3. move a freshly paid order forward by one step
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        voucher_repository: Optional[VoucherRepository] = None,
    ):
        self.order_repository = order_repository
        self.voucher_repository = voucher_repository
        self.events: List = []

    async def get_order(self, order_id: int) -> Order:
        order = await self.order_repository.get_by_id(order_id)
        if not order:
            raise OrderNotFoundException(order_id)
        return order

    async def get_order_by_code(self, code: str) -> Order:
        order = await self.order_repository.get_by_code(code)
        if not order:
            raise OrderNotFoundException(code=code)
        return order

    async def place_order(
        self,
        *,
        customer_id: Optional[str],
        items: List[OrderItem],
        payment_method: PaymentMethod,
        shipping_address: Optional[ShippingAddress] = None,
        voucher_code: Optional[str] = None,
        staff_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        now = now or datetime.now(timezone.utc)
        subtotal = sum((item.line_total for item in items), Decimal("0"))
        discount = Decimal("0")
        code = None
        if voucher_code:
            discount, code = await self._apply_voucher(voucher_code, subtotal, now)

        order = Order.place(
            customer_id=customer_id,
            items=items,
            payment_method=payment_method,
            discount=discount,
            voucher_code=code,
            shipping_address=shipping_address,
            staff_id=staff_id,
            note=note,
            now=now,
        )
        created = await self.order_repository.create(order)
        self.events.append(OrderPlaced(
            order_id=created.id,
            order_code=created.code,
            total=str(created.total),
            voucher_code=created.voucher_code,
        ))
        return created

    async def _apply_voucher(self, voucher_code: str, subtotal: Decimal, now: datetime) -> tuple[Decimal, str]:
        if self.voucher_repository is None:
            raise VoucherNotFoundException(voucher_code)
        voucher = await self.voucher_repository.get_by_code(voucher_code.strip().upper())
        if not voucher:
            raise VoucherNotFoundException(voucher_code)
        voucher.ensure_applicable(subtotal, now=now)
        discount = voucher.compute_discount(subtotal)
        # conditional increment: loses the race when the last use was taken meanwhile
        if not await self.voucher_repository.increment_usage(voucher.code):
            raise VoucherNotApplicableException(voucher.code, "voucher usage limit reached")
        return discount, voucher.code

    async def transition(
        self,
        order: Order,
        new_status: OrderStatus,
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        previous = order.status
        state_machine.transition(order, new_status, note, actor)
        updated = await self.order_repository.update(order)
        self.events.append(OrderStatusChanged(
            order_id=updated.id,
            order_code=updated.code,
            from_status=previous.value,
            to_status=updated.status.value,
            actor=actor,
        ))
        return updated

    async def cancel(self, order: Order, note: Optional[str] = None, actor: Optional[str] = None) -> Order:
        return await self.transition(order, OrderStatus.DA_HUY, note or "Order cancelled", actor)

    async def advance_after_payment(
        self,
        order: Order,
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Optional[Order]:
        """Apply at most one transition once the order is fully paid."""
        if order.payment_status != OrderPaymentStatus.PAID:
            return None
        target = _ADVANCE_WHEN_PAID.get(order.status)
        if target is None or not state_machine.can_transition(order, target):
            return None
        return await self.transition(order, target, note or "Payment received", actor)

    def clear_events(self) -> List:
        """Drain and return collected domain events"""
        events = self.events.copy()
        self.events.clear()
        return events
