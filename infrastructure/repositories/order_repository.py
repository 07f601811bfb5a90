"""
Order repository - SQLAlchemy implementation with versioned updates.
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentModificationException
from domain.order.entity import (
    Order,
    OrderHistoryEntry,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    ShippingAddress,
)
from domain.order.repository import OrderRepository
from domain.payment.entity import PaymentMethod
from infrastructure.models.order import OrderHistoryModel, OrderItemModel, OrderModel
from .errors import storage_errors


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """Order repository backed by SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        address = None
        if model.recipient_name:
            address = ShippingAddress(
                recipient_name=model.recipient_name,
                phone=model.recipient_phone or "",
                address_line=model.address_line or "",
                ward=model.ward,
                district=model.district,
                province=model.province,
            )
        return Order(
            id=model.id,
            code=model.code,
            customer_id=model.customer_id,
            staff_id=model.staff_id,
            items=[
                OrderItem(
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    name=i.name,
                    quantity=i.quantity,
                    unit_price=Decimal(str(i.unit_price)),
                )
                for i in model.items
            ],
            subtotal=Decimal(str(model.subtotal)),
            discount=Decimal(str(model.discount)),
            total=Decimal(str(model.total)),
            voucher_code=model.voucher_code,
            payment_method=PaymentMethod(model.payment_method),
            status=OrderStatus(model.status),
            payment_status=OrderPaymentStatus(model.payment_status),
            shipping_address=address,
            note=model.note,
            history=[
                OrderHistoryEntry(
                    id=h.id,
                    status=OrderStatus(h.status),
                    note=h.note,
                    actor=h.actor,
                    created_at=h.created_at,
                )
                for h in model.history
            ],
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            confirmed_at=model.confirmed_at,
            shipped_at=model.shipped_at,
            delivered_at=model.delivered_at,
            completed_at=model.completed_at,
            cancelled_at=model.cancelled_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        address = entity.shipping_address
        return OrderModel(
            code=entity.code,
            customer_id=entity.customer_id,
            staff_id=entity.staff_id,
            subtotal=entity.subtotal,
            discount=entity.discount,
            total=entity.total,
            voucher_code=entity.voucher_code,
            payment_method=entity.payment_method.value,
            status=entity.status.value,
            payment_status=entity.payment_status.value,
            version=entity.version,
            recipient_name=address.recipient_name if address else None,
            recipient_phone=address.phone if address else None,
            address_line=address.address_line if address else None,
            ward=address.ward if address else None,
            district=address.district if address else None,
            province=address.province if address else None,
            note=entity.note,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            items=[
                OrderItemModel(
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    name=i.name,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                )
                for i in entity.items
            ],
            history=[self._history_model(h) for h in entity.history],
        )

    @staticmethod
    def _history_model(entry: OrderHistoryEntry, order_id: Optional[int] = None) -> OrderHistoryModel:
        return OrderHistoryModel(
            order_id=order_id,
            status=entry.status.value,
            note=entry.note,
            actor=entry.actor,
            created_at=entry.created_at,
        )

    async def _fetch_one(self, *criteria) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def create(self, order: Order) -> Order:
        with storage_errors("order.create", order_code=order.code):
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
            created = await self._fetch_one(OrderModel.id == db_order.id)
        logger.info("order_created", order_id=created.id, order_code=created.code, total=str(created.total))
        return created

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        with storage_errors("order.get", order_id=order_id):
            return await self._fetch_one(OrderModel.id == order_id)

    async def get_by_code(self, code: str) -> Optional[Order]:
        with storage_errors("order.get_by_code", order_code=code):
            return await self._fetch_one(OrderModel.code == code)

    async def list_by_customer(
        self,
        customer_id: str,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        query = select(OrderModel).where(OrderModel.customer_id == customer_id)
        if status:
            query = query.where(OrderModel.status == status.value)
        query = query.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(skip).limit(limit)
        with storage_errors("order.list", customer_id=customer_id):
            result = await self.session.execute(query.execution_options(populate_existing=True))
            return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, order: Order) -> Order:
        """Conditional write on (id, version); new history rows are inserted."""
        expected = order.version
        with storage_errors("order.update", order_id=order.id):
            result = await self.session.execute(
                update(OrderModel)
                .where(OrderModel.id == order.id, OrderModel.version == expected)
                .values(
                    status=order.status.value,
                    payment_status=order.payment_status.value,
                    version=expected + 1,
                    updated_at=order.updated_at,
                    confirmed_at=order.confirmed_at,
                    shipped_at=order.shipped_at,
                    delivered_at=order.delivered_at,
                    completed_at=order.completed_at,
                    cancelled_at=order.cancelled_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    "order_version_conflict",
                    order_id=order.id,
                    expected_version=expected,
                )
                raise ConcurrentModificationException("Order", order.id, expected)

            for index, entry in enumerate(order.history):
                if entry.id is None:
                    row = self._history_model(entry, order.id)
                    self.session.add(row)
                    await self.session.flush()
                    order.history[index] = OrderHistoryEntry(
                        id=row.id,
                        status=entry.status,
                        note=entry.note,
                        actor=entry.actor,
                        created_at=entry.created_at,
                    )

        order.version = expected + 1
        logger.info(
            "order_updated",
            order_id=order.id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            version=order.version,
        )
        return order
