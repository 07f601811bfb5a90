"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from application.dtos.base import DTOBase
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from shared.codes.payment_codes import VNPAY_SUCCESS_CODE


class PaymentRequest(BaseModel):
    """One signing attempt against the gateway.

    Merchant credentials are not part of the request; the gateway adapter
    holds them from configuration.
    """

    amount: Decimal
    txn_ref: str
    order_info: str
    client_ip: Optional[str] = None
    return_url: Optional[str] = None
    locale: Optional[str] = None
    bank_code: Optional[str] = None
    created_at: Optional[datetime] = None
    expire_at: Optional[datetime] = None


class CallbackResult(BaseModel):
    """Fields of an authentic gateway callback."""

    txn_ref: str
    transaction_no: Optional[str] = None
    amount: Decimal
    response_code: str
    transaction_status: Optional[str] = None
    bank_code: Optional[str] = None
    bank_tran_no: Optional[str] = None
    card_type: Optional[str] = None
    pay_date: Optional[datetime] = None
    order_info: Optional[str] = None
    secure_hash: str
    raw: dict[str, str] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.response_code == VNPAY_SUCCESS_CODE and (
            self.transaction_status in (None, "", VNPAY_SUCCESS_CODE)
        )


class CallbackVerification(BaseModel):
    authentic: bool
    result: Optional[CallbackResult] = None


class ReconciliationOutcome(str, Enum):
    CONFIRMED = "CONFIRMED"                  # payment recorded as completed
    DECLINED = "DECLINED"                    # authentic callback, gateway declined
    ALREADY_CONFIRMED = "ALREADY_CONFIRMED"  # duplicate delivery, nothing written
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class ReconciliationResult(DTOBase):
    outcome: ReconciliationOutcome
    txn_ref: Optional[str] = None
    order_id: Optional[int] = None
    order_code: Optional[str] = None
    payment_id: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    order_payment_status: Optional[str] = None
    order_status: Optional[str] = None
    response_code: Optional[str] = None
    message: Optional[str] = None


class IpnAck(BaseModel):
    """Body VNPay expects back from the IPN endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    rsp_code: str = Field(alias="RspCode")
    message: str = Field(alias="Message")


class CheckoutRequest(BaseModel):
    order_id: int
    bank_code: Optional[str] = Field(default=None, max_length=20)
    locale: Optional[Literal["vn", "en"]] = None
    return_url: Optional[str] = None


class CheckoutResponse(DTOBase):
    payment_url: str
    txn_ref: str
    payment_id: Optional[int] = None
    payment_code: str
    amount: Decimal
    expire_at: Optional[datetime] = None


class ManualPaymentCreate(BaseModel):
    order_id: int
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    method: Literal["CASH", "BANK_TRANSFER", "COD"] = "CASH"
    note: Optional[str] = Field(default=None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def _not_pending(cls, v: PaymentStatus) -> PaymentStatus:
        if v == PaymentStatus.PENDING:
            raise ValueError("status cannot be set back to PENDING")
        return v


class GatewayInfoDTO(DTOBase):
    provider: str
    txn_ref: str
    transaction_no: Optional[str] = None
    response_code: Optional[str] = None
    transaction_status: Optional[str] = None
    bank_code: Optional[str] = None
    bank_tran_no: Optional[str] = None
    card_type: Optional[str] = None
    pay_date: Optional[datetime] = None


class PaymentDTO(DTOBase):
    id: int
    code: str
    order_id: int
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    gateway: Optional[GatewayInfoDTO] = None
    note: Optional[str] = None
    created_by: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentDTO":
        return cls.model_validate(payment)


class GatewayTransactionDTO(DTOBase):
    """Result of a querydr lookup at the gateway."""

    txn_ref: str
    response_code: str
    message: Optional[str] = None
    transaction_no: Optional[str] = None
    transaction_status: Optional[str] = None
    amount: Optional[Decimal] = None
    bank_code: Optional[str] = None
    pay_date: Optional[datetime] = None
    internal_status: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)
