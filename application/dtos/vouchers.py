"""
Voucher DTOs.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.types import condecimal

from application.dtos.base import DTOBase
from domain.voucher.entity import VoucherStatus, VoucherType


class VoucherCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    name: str = Field(..., min_length=1, max_length=255)
    type: VoucherType
    value: condecimal(gt=0)  # type: ignore[valid-type]
    quantity: int = Field(..., ge=0)
    start_at: datetime
    end_at: datetime
    min_order_value: condecimal(ge=0) = Decimal("0")  # type: ignore[valid-type]
    max_discount: Optional[condecimal(gt=0)] = None  # type: ignore[valid-type]
    status: VoucherStatus = VoucherStatus.ACTIVE

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if self.type == VoucherType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage value cannot exceed 100")
        return self


class VoucherQuoteRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_value: condecimal(gt=0)  # type: ignore[valid-type]


class VoucherDTO(DTOBase):
    id: int
    code: str
    name: str
    type: VoucherType
    value: Decimal
    quantity: int
    used_count: int
    remaining: int
    min_order_value: Decimal
    max_discount: Optional[Decimal] = None
    status: VoucherStatus
    start_at: datetime
    end_at: datetime


class VoucherQuoteDTO(DTOBase):
    code: str
    order_value: Decimal
    discount: Decimal
    total: Decimal
