"""
Order application service - checkout, reads and status changes.
"""
from typing import Callable, List, Optional

from application.dtos.auth import Principal
from application.dtos.orders import (
    OrderCancelRequest,
    OrderCreate,
    OrderDTO,
    OrderTransitionRequest,
)
from application.services.access import ensure_can_access_order, ensure_staff
from application.services.events import publish
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import OrderStatus
from domain.order.service import OrderDomainService


logger = get_logger(__name__)


class OrderApplicationService:
    """Order use-cases; each call runs in its own unit of work"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def place_order(self, data: OrderCreate, principal: Principal) -> OrderDTO:
        """Customers order for themselves; staff may order on behalf of a customer."""
        if principal.is_staff:
            customer_id, staff_id = data.customer_id, principal.user_id
        else:
            customer_id, staff_id = principal.user_id, None

        async with self._uow_factory() as uow:
            service = OrderDomainService(uow.order_repository, uow.voucher_repository)
            order = await service.place_order(
                customer_id=customer_id,
                items=[item.to_entity() for item in data.items],
                payment_method=data.payment_method,
                shipping_address=data.shipping_address.to_entity() if data.shipping_address else None,
                voucher_code=data.voucher_code,
                staff_id=staff_id,
                note=data.note,
            )
            publish(service.clear_events())
            return OrderDTO.from_entity(order)

    async def get_order(self, order_id: int, principal: Principal) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await OrderDomainService(uow.order_repository).get_order(order_id)
            ensure_can_access_order(order, principal)
            return OrderDTO.from_entity(order)

    async def get_order_by_code(self, code: str, principal: Principal) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await OrderDomainService(uow.order_repository).get_order_by_code(code)
            ensure_can_access_order(order, principal)
            return OrderDTO.from_entity(order)

    async def list_my_orders(
        self,
        principal: Principal,
        skip: int = 0,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
    ) -> List[OrderDTO]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_customer(principal.user_id, skip, limit, status)
            return [OrderDTO.from_entity(o) for o in orders]

    async def transition(
        self,
        order_id: int,
        req: OrderTransitionRequest,
        principal: Principal,
    ) -> OrderDTO:
        ensure_staff(principal)
        async with self._uow_factory() as uow:
            service = OrderDomainService(uow.order_repository)
            order = await service.get_order(order_id)
            order = await service.transition(order, req.status, req.note, principal.user_id)
            publish(service.clear_events())
            logger.info(
                "order_transitioned",
                order_id=order.id,
                status=order.status.value,
                actor=principal.user_id,
            )
            return OrderDTO.from_entity(order)

    async def cancel(self, order_id: int, req: OrderCancelRequest, principal: Principal) -> OrderDTO:
        """Owner or staff; the state machine only allows it before shipment."""
        async with self._uow_factory() as uow:
            service = OrderDomainService(uow.order_repository)
            order = await service.get_order(order_id)
            ensure_can_access_order(order, principal)
            order = await service.cancel(order, req.note, principal.user_id)
            publish(service.clear_events())
            logger.info("order_cancelled", order_id=order.id, actor=principal.user_id)
            return OrderDTO.from_entity(order)
