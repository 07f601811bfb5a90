"""
Payments API routes.

Checkout, the VNPay return/IPN callbacks, staff-side manual payments and
status changes. Keep this thin: no gateway details here.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_current_principal, get_payment_service, require_staff
from api.middleware.request_id import resolve_client_ip
from application.dtos.auth import Principal
from application.dtos.payments import (
    CheckoutRequest,
    CheckoutResponse,
    GatewayTransactionDTO,
    IpnAck,
    ManualPaymentCreate,
    PaymentDTO,
    PaymentStatusUpdate,
    ReconciliationOutcome,
    ReconciliationResult,
)
from application.services.payment_service import PaymentApplicationService, ipn_ack
from core.i18n import get_locale, t
from core.logging_config import get_logger
from core.response import Response as ApiResponse, error_response, success_response
from core.settings import payment_settings
from shared.codes.payment_codes import PaymentCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _client_ip(request: Request) -> str:
    return getattr(request.state, "client_ip", None) or resolve_client_ip(request)


def ip_allowed(remote_ip: str | None, allowlist: list[str] | None) -> bool:
    """Empty allowlist admits everyone; entries are single IPs or CIDRs."""
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("ipn_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/vnpay/checkout", summary="Create VNPay payment URL", response_model=ApiResponse[CheckoutResponse])
async def vnpay_checkout(
    payload: CheckoutRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    checkout = await service.create_checkout(payload, principal, client_ip=_client_ip(request))
    return success_response(data=checkout, message=t("payments.vnpay.checkout_created"))


@router.get("/vnpay/return", summary="VNPay browser return", response_model=ApiResponse[ReconciliationResult])
async def vnpay_return(
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """
    Where the gateway sends the shopper back. Verified and reconciled like
    the IPN, so whichever arrives first applies the payment.
    """
    result = await service.reconcile_callback(dict(request.query_params))
    if result.outcome == ReconciliationOutcome.INVALID_SIGNATURE:
        body = error_response(
            code=PaymentCode.SIGNATURE_ERROR,
            message=t("payments.invalid_signature"),
            error_type="SignatureMismatch",
            details={"txn_ref": result.txn_ref},
            request_id=getattr(request.state, "request_id", None),
            locale=get_locale(),
            message_key="payments.invalid_signature",
        )
        return JSONResponse(status_code=400, content=body.model_dump(mode="json"))
    return success_response(data=result, message=t("payments.vnpay.return_processed"))


@router.get("/vnpay/ipn", summary="VNPay IPN", response_model=IpnAck)
async def vnpay_ipn(
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Server-to-server notification; answers the gateway's RspCode contract."""
    remote_ip = request.client.host if request.client else None
    if not ip_allowed(remote_ip, payment_settings.ipn.ip_allowlist):
        logger.warning("ipn_ip_not_allowed", remote_ip=remote_ip)
        ack = ipn_ack(None)
        return JSONResponse(status_code=403, content=ack.model_dump(by_alias=True))

    try:
        result = await service.reconcile_callback(dict(request.query_params))
    except Exception as exc:
        # the gateway retries on 99; log with trace and answer it
        logger.error(
            "ipn_processing_failed",
            txn_ref=request.query_params.get("vnp_TxnRef"),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        result = None
    ack = ipn_ack(result)
    logger.info("ipn_acknowledged", txn_ref=request.query_params.get("vnp_TxnRef"), rsp_code=ack.rsp_code)
    return JSONResponse(content=ack.model_dump(by_alias=True))


@router.get(
    "/vnpay/transactions/{txn_ref}",
    summary="Query gateway transaction",
    response_model=ApiResponse[GatewayTransactionDTO],
)
async def vnpay_query(
    txn_ref: str,
    request: Request,
    principal: Principal = Depends(require_staff),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    tx = await service.query_gateway_transaction(txn_ref, principal, client_ip=_client_ip(request))
    return success_response(data=tx, message=t("payments.vnpay.query"))


@router.post("", summary="Record manual payment", response_model=ApiResponse[PaymentDTO])
async def record_payment(
    payload: ManualPaymentCreate,
    principal: Principal = Depends(require_staff),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    payment = await service.record_manual_payment(payload, principal)
    return success_response(data=payment, message=t("payment.recorded"))


@router.patch("/{payment_id}/status", summary="Change payment status", response_model=ApiResponse[PaymentDTO])
async def update_payment_status(
    payment_id: int,
    payload: PaymentStatusUpdate,
    principal: Principal = Depends(require_staff),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    payment = await service.update_payment_status(payment_id, payload, principal)
    return success_response(data=payment, message=t("payment.status.updated"))
