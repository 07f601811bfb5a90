"""
Voucher application service.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.vouchers import VoucherCreate, VoucherDTO, VoucherQuoteDTO, VoucherQuoteRequest
from domain.common.exceptions import VoucherAlreadyExistsException, VoucherNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.voucher.entity import Voucher


class VoucherApplicationService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create_voucher(self, data: VoucherCreate) -> VoucherDTO:
        now = self._clock()
        voucher = Voucher(
            id=None,
            code=data.code,
            name=data.name,
            type=data.type,
            value=Decimal(data.value),
            quantity=data.quantity,
            start_at=data.start_at,
            end_at=data.end_at,
            min_order_value=Decimal(data.min_order_value),
            max_discount=Decimal(data.max_discount) if data.max_discount is not None else None,
            status=data.status,
            created_at=now,
            updated_at=now,
        )
        async with self._uow_factory() as uow:
            if await uow.voucher_repository.get_by_code(voucher.code):
                raise VoucherAlreadyExistsException(voucher.code)
            created = await uow.voucher_repository.create(voucher)
            return VoucherDTO.model_validate(created)

    async def get_voucher(self, code: str) -> VoucherDTO:
        async with self._uow_factory(readonly=True) as uow:
            voucher = await uow.voucher_repository.get_by_code(code)
            if not voucher:
                raise VoucherNotFoundException(code)
            return VoucherDTO.model_validate(voucher)

    async def quote(self, req: VoucherQuoteRequest) -> VoucherQuoteDTO:
        """Preview the discount without consuming a use."""
        async with self._uow_factory(readonly=True) as uow:
            voucher = await uow.voucher_repository.get_by_code(req.code)
            if not voucher:
                raise VoucherNotFoundException(req.code)
        order_value = Decimal(req.order_value)
        voucher.ensure_applicable(order_value, now=self._clock())
        discount = voucher.compute_discount(order_value)
        return VoucherQuoteDTO(
            code=voucher.code,
            order_value=order_value,
            discount=discount,
            total=order_value - discount,
        )
