"""
Payment repository - SQLAlchemy implementation.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import (
    ConcurrentModificationException,
    DuplicatePaymentException,
    PaymentNotFoundException,
)
from domain.payment.entity import GatewayInfo, Payment, PaymentMethod, PaymentStatus
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel
from .errors import storage_errors


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """Payment repository backed by SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        gateway = None
        if model.provider:
            gateway = GatewayInfo(
                provider=model.provider,
                txn_ref=model.txn_ref,
                transaction_no=model.transaction_no,
                response_code=model.response_code,
                transaction_status=model.transaction_status,
                bank_code=model.bank_code,
                bank_tran_no=model.bank_tran_no,
                card_type=model.card_type,
                pay_date=model.pay_date,
                order_info=model.order_info,
            )
        return Payment(
            id=model.id,
            code=model.code,
            order_id=model.order_id,
            amount=Decimal(str(model.amount)),
            method=PaymentMethod(model.method),
            status=PaymentStatus(model.status),
            gateway=gateway,
            note=model.note,
            created_by=model.created_by,
            failure_reason=model.failure_reason,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            paid_at=model.paid_at,
            refunded_at=model.refunded_at,
        )

    @staticmethod
    def _values(entity: Payment) -> dict:
        """Mutable columns of a payment row."""
        gw = entity.gateway
        return {
            "status": entity.status.value,
            "provider": gw.provider if gw else None,
            "txn_ref": gw.txn_ref if gw else None,
            "transaction_no": gw.transaction_no if gw else None,
            "response_code": gw.response_code if gw else None,
            "transaction_status": gw.transaction_status if gw else None,
            "bank_code": gw.bank_code if gw else None,
            "bank_tran_no": gw.bank_tran_no if gw else None,
            "card_type": gw.card_type if gw else None,
            "pay_date": gw.pay_date if gw else None,
            "order_info": gw.order_info if gw else None,
            "note": entity.note,
            "failure_reason": entity.failure_reason,
            "updated_at": entity.updated_at or datetime.now(timezone.utc),
            "paid_at": entity.paid_at,
            "refunded_at": entity.refunded_at,
        }

    def _to_model(self, entity: Payment) -> PaymentModel:
        return PaymentModel(
            code=entity.code,
            order_id=entity.order_id,
            amount=entity.amount,
            method=entity.method.value,
            created_by=entity.created_by,
            created_at=entity.created_at,
            version=entity.version,
            **self._values(entity),
        )

    async def _write_guarding_duplicates(self, payment: Payment, write):
        # savepoint keeps the surrounding unit of work usable after a conflict
        try:
            async with self.session.begin_nested():
                result = await write()
                await self.session.flush()
                return result
        except IntegrityError as e:
            transaction_no = payment.gateway.transaction_no if payment.gateway else None
            logger.warning(
                "payment_write_conflict",
                payment_code=payment.code,
                txn_ref=payment.txn_ref,
                transaction_no=transaction_no,
            )
            raise DuplicatePaymentException(transaction_no or payment.txn_ref or payment.code) from e

    async def create(self, payment: Payment) -> Payment:
        with storage_errors("payment.create", order_id=payment.order_id):
            db_payment = self._to_model(payment)

            async def _insert():
                self.session.add(db_payment)

            await self._write_guarding_duplicates(payment, _insert)
            await self.session.refresh(db_payment)
        logger.info(
            "payment_recorded",
            payment_id=db_payment.id,
            payment_code=db_payment.code,
            order_id=db_payment.order_id,
            method=db_payment.method,
            status=db_payment.status,
            amount=str(db_payment.amount),
        )
        return self._to_entity(db_payment)

    async def _fetch_one(self, *criteria) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        with storage_errors("payment.get", payment_id=payment_id):
            return await self._fetch_one(PaymentModel.id == payment_id)

    async def get_by_txn_ref(self, txn_ref: str) -> Optional[Payment]:
        with storage_errors("payment.get_by_txn_ref", txn_ref=txn_ref):
            return await self._fetch_one(PaymentModel.txn_ref == txn_ref)

    async def get_by_transaction_no(self, provider: str, transaction_no: str) -> Optional[Payment]:
        with storage_errors("payment.get_by_transaction_no", transaction_no=transaction_no):
            return await self._fetch_one(
                PaymentModel.provider == provider,
                PaymentModel.transaction_no == transaction_no,
            )

    async def list_by_order(
        self,
        order_id: int,
        status: Optional[PaymentStatus] = None,
    ) -> List[Payment]:
        query = select(PaymentModel).where(PaymentModel.order_id == order_id)
        if status:
            query = query.where(PaymentModel.status == status.value)
        query = query.order_by(PaymentModel.created_at.asc(), PaymentModel.id.asc())
        with storage_errors("payment.list", order_id=order_id):
            result = await self.session.execute(query.execution_options(populate_existing=True))
            return [self._to_entity(p) for p in result.scalars().all()]

    async def sum_completed_by_order(self, order_id: int) -> Decimal:
        with storage_errors("payment.sum_completed", order_id=order_id):
            result = await self.session.execute(
                select(func.coalesce(func.sum(PaymentModel.amount), 0)).where(
                    PaymentModel.order_id == order_id,
                    PaymentModel.status == PaymentStatus.COMPLETED.value,
                )
            )
            return Decimal(str(result.scalar_one()))

    async def update(self, payment: Payment) -> Payment:
        """Conditional write on (id, version); a stale copy never overwrites a newer status."""
        expected = payment.version
        with storage_errors("payment.update", payment_id=payment.id):

            async def _conditional_update():
                return await self.session.execute(
                    update(PaymentModel)
                    .where(PaymentModel.id == payment.id, PaymentModel.version == expected)
                    .values(version=expected + 1, **self._values(payment))
                    .execution_options(synchronize_session=False)
                )

            result = await self._write_guarding_duplicates(payment, _conditional_update)
            if result.rowcount != 1:
                exists = await self.session.scalar(select(PaymentModel.id).where(PaymentModel.id == payment.id))
                if exists is None:
                    raise PaymentNotFoundException(payment.id)
                logger.warning(
                    "payment_version_conflict",
                    payment_id=payment.id,
                    expected_version=expected,
                    status=payment.status.value,
                )
                raise ConcurrentModificationException("Payment", payment.id, expected)
            updated = await self._fetch_one(PaymentModel.id == payment.id)

        logger.info(
            "payment_updated",
            payment_id=updated.id,
            order_id=updated.order_id,
            status=updated.status.value,
            version=updated.version,
        )
        return updated
