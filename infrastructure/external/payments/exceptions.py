"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="PaymentRecoverableError",
            details=full_details,
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )



class InvalidPaymentRequestException(BusinessException):
    """A payment request that cannot be signed; names the offending field."""

    def __init__(self, field: str, message: str, *, provider: str = "vnpay"):
        super().__init__(
            code=PaymentCode.INVALID_REQUEST,
            message=message,
            error_type="InvalidPaymentRequest",
            details={"provider": provider, "field": field},
            field=field,
            message_key="payments.invalid_request",
            format_params={"field": field},
        )


class MalformedCallbackException(BusinessException):
    """Authentic callback whose fields cannot be parsed."""

    def __init__(self, field: str, value: str | None, *, provider: str = "vnpay"):
        super().__init__(
            code=PaymentCode.INVALID_CALLBACK,
            message=f"Malformed callback field {field}",
            error_type="MalformedCallback",
            details={"provider": provider, "field": field, "value": value},
            field=field,
            message_key="payments.invalid_callback",
            format_params={"field": field},
        )
