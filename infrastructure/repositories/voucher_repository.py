"""
Voucher repository - SQLAlchemy implementation.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import VoucherAlreadyExistsException
from domain.voucher.entity import Voucher, VoucherStatus, VoucherType
from domain.voucher.repository import VoucherRepository
from infrastructure.models.voucher import VoucherModel
from .errors import storage_errors


logger = get_logger(__name__)


class SQLAlchemyVoucherRepository(VoucherRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: VoucherModel) -> Voucher:
        return Voucher(
            id=model.id,
            code=model.code,
            name=model.name,
            type=VoucherType(model.type),
            value=Decimal(str(model.value)),
            quantity=model.quantity,
            used_count=model.used_count,
            min_order_value=Decimal(str(model.min_order_value)),
            max_discount=Decimal(str(model.max_discount)) if model.max_discount is not None else None,
            status=VoucherStatus(model.status),
            start_at=model.start_at,
            end_at=model.end_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Voucher) -> VoucherModel:
        return VoucherModel(
            code=entity.code,
            name=entity.name,
            type=entity.type.value,
            value=entity.value,
            quantity=entity.quantity,
            used_count=entity.used_count,
            min_order_value=entity.min_order_value,
            max_discount=entity.max_discount,
            status=entity.status.value,
            start_at=entity.start_at,
            end_at=entity.end_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, voucher: Voucher) -> Voucher:
        with storage_errors("voucher.create", voucher_code=voucher.code):
            db_voucher = self._to_model(voucher)
            try:
                async with self.session.begin_nested():
                    self.session.add(db_voucher)
                    await self.session.flush()
            except IntegrityError as e:
                logger.warning("voucher_create_conflict", voucher_code=voucher.code)
                raise VoucherAlreadyExistsException(voucher.code) from e
            await self.session.refresh(db_voucher)
        logger.info("voucher_created", voucher_code=db_voucher.code, quantity=db_voucher.quantity)
        return self._to_entity(db_voucher)

    async def get_by_code(self, code: str) -> Optional[Voucher]:
        with storage_errors("voucher.get", voucher_code=code):
            result = await self.session.execute(
                select(VoucherModel)
                .where(VoucherModel.code == code.strip().upper())
                .execution_options(populate_existing=True)
            )
            db_voucher = result.scalar_one_or_none()
            return self._to_entity(db_voucher) if db_voucher else None

    async def increment_usage(self, code: str) -> bool:
        with storage_errors("voucher.increment_usage", voucher_code=code):
            result = await self.session.execute(
                update(VoucherModel)
                .where(
                    VoucherModel.code == code,
                    VoucherModel.status == VoucherStatus.ACTIVE.value,
                    VoucherModel.used_count < VoucherModel.quantity,
                )
                .values(used_count=VoucherModel.used_count + 1)
                .execution_options(synchronize_session=False)
            )
        consumed = result.rowcount == 1
        logger.info("voucher_usage_consumed" if consumed else "voucher_usage_exhausted", voucher_code=code)
        return consumed
