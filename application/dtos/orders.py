"""
Order DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.types import condecimal

from application.dtos.base import DTOBase
from domain.order.entity import (
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    ShippingAddress,
)
from domain.payment.entity import PaymentMethod


class OrderItemIn(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: Optional[str] = Field(default=None, max_length=64)
    name: Optional[str] = Field(default=None, max_length=255)
    quantity: int = Field(..., gt=0, le=1000)
    unit_price: condecimal(ge=0)  # type: ignore[valid-type]

    def to_entity(self) -> OrderItem:
        return OrderItem(
            product_id=self.product_id,
            variant_id=self.variant_id,
            name=self.name,
            quantity=self.quantity,
            unit_price=Decimal(self.unit_price),
        )


class ShippingAddressIn(BaseModel):
    recipient_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=r"^\+?\d{9,15}$")
    address_line: str = Field(..., min_length=1, max_length=255)
    ward: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    province: Optional[str] = Field(default=None, max_length=100)

    def to_entity(self) -> ShippingAddress:
        return ShippingAddress(**self.model_dump())


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.COD
    shipping_address: Optional[ShippingAddressIn] = None
    voucher_code: Optional[str] = Field(default=None, max_length=50)
    customer_id: Optional[str] = Field(default=None, description="Staff only: place on behalf of a customer")
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("voucher_code")
    @classmethod
    def _normalize_voucher(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class OrderTransitionRequest(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=500)


class OrderCancelRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=500)


class OrderItemDTO(DTOBase):
    product_id: str
    variant_id: Optional[str] = None
    name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class ShippingAddressDTO(DTOBase):
    recipient_name: str
    phone: str
    address_line: str
    ward: Optional[str] = None
    district: Optional[str] = None
    province: Optional[str] = None


class OrderHistoryDTO(DTOBase):
    status: OrderStatus
    note: Optional[str] = None
    actor: Optional[str] = None
    created_at: datetime


class OrderDTO(DTOBase):
    id: int
    code: str
    customer_id: Optional[str] = None
    staff_id: Optional[str] = None
    items: List[OrderItemDTO]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    voucher_code: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: OrderPaymentStatus
    status: OrderStatus
    shipping_address: Optional[ShippingAddressDTO] = None
    note: Optional[str] = None
    history: List[OrderHistoryDTO]
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderDTO":
        return cls.model_validate(order)
