"""Domain-level business exceptions, shared by domain and infrastructure.

The core layer only maps these to HTTP responses; the domain never imports core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base class for all business errors."""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None, *, code: Optional[str] = None):
        details = {}
        if order_id is not None:
            details["order_id"] = order_id
        if code is not None:
            details["order_code"] = code
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details or None,
            message_key="order.not_found",
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, payment_id: Optional[int] = None, *, txn_ref: Optional[str] = None):
        details = {}
        if payment_id is not None:
            details["payment_id"] = payment_id
        if txn_ref is not None:
            details["txn_ref"] = txn_ref
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="PaymentNotFound",
            details=details or None,
            message_key="payment.not_found",
        )


class VoucherNotFoundException(BusinessException):
    def __init__(self, code: str):
        super().__init__(
            code=BusinessCode.VOUCHER_NOT_FOUND,
            message=f"Voucher {code} not found",
            error_type="VoucherNotFound",
            details={"voucher_code": code},
            field="voucher_code",
            message_key="voucher.not_found",
            format_params={"code": code},
        )


class InvalidTransitionException(BusinessException):
    def __init__(self, current: str, target: str, *, reason: Optional[str] = None):
        details = {"current": current, "target": target}
        if reason:
            details["reason"] = reason
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=f"Cannot move from {current} to {target}",
            error_type="InvalidTransition",
            details=details,
            field="status",
            message_key="order.transition.invalid",
            format_params={"current": current, "target": target},
        )


class OrderClosedException(BusinessException):
    """Payments cannot be taken against a completed or cancelled order."""

    def __init__(self, order_code: str, status: str):
        super().__init__(
            code=BusinessCode.ORDER_CLOSED,
            message=f"Order {order_code} is closed ({status})",
            error_type="OrderClosed",
            details={"order_code": order_code, "status": status},
            message_key="order.closed",
            format_params={"code": order_code, "status": status},
        )


class OrderAlreadyPaidException(BusinessException):
    def __init__(self, order_code: str):
        super().__init__(
            code=BusinessCode.ORDER_ALREADY_PAID,
            message=f"Order {order_code} is already fully paid",
            error_type="OrderAlreadyPaid",
            details={"order_code": order_code},
            message_key="order.already_paid",
            format_params={"code": order_code},
        )


class OrderTotalNotFinalException(BusinessException):
    def __init__(self, order_code: str):
        super().__init__(
            code=BusinessCode.ORDER_TOTAL_NOT_FINAL,
            message=f"Order {order_code} total is not finalized",
            error_type="OrderTotalNotFinal",
            details={"order_code": order_code},
            message_key="order.total.not_final",
        )


class VoucherNotApplicableException(BusinessException):
    def __init__(self, code: str, reason: str):
        super().__init__(
            code=BusinessCode.VOUCHER_NOT_APPLICABLE,
            message=f"Voucher {code} cannot be applied: {reason}",
            error_type="VoucherNotApplicable",
            details={"voucher_code": code, "reason": reason},
            field="voucher_code",
            message_key="voucher.not_applicable",
            format_params={"code": code, "reason": reason},
        )


class VoucherAlreadyExistsException(BusinessException):
    def __init__(self, code: str):
        super().__init__(
            code=BusinessCode.VOUCHER_ALREADY_EXISTS,
            message=f"Voucher {code} already exists",
            error_type="VoucherAlreadyExists",
            details={"voucher_code": code},
            field="code",
            message_key="voucher.exists",
        )


class ConcurrentModificationException(BusinessException):
    """Raised when a conditional (versioned) update matched no row."""

    def __init__(self, entity: str, entity_id: Optional[int], expected_version: Optional[int] = None):
        super().__init__(
            code=BusinessCode.CONCURRENT_MODIFICATION,
            message=f"{entity} {entity_id} was modified concurrently",
            error_type="ConcurrentModification",
            details={"entity": entity, "id": entity_id, "expected_version": expected_version},
            message_key="conflict.concurrent_modification",
        )


class DuplicatePaymentException(BusinessException):
    def __init__(self, transaction_no: str):
        super().__init__(
            code=BusinessCode.DUPLICATE_PAYMENT,
            message=f"Gateway transaction {transaction_no} already recorded",
            error_type="DuplicatePayment",
            details={"transaction_no": transaction_no},
            message_key="payment.duplicate",
        )


class StorageException(BusinessException):
    def __init__(self, operation: str, error: Optional[str] = None):
        super().__init__(
            code=BusinessCode.DATABASE_ERROR,
            message=f"Storage failure during {operation}",
            error_type="StorageError",
            details={"operation": operation, "error": error},
            message_key="error.storage",
        )
