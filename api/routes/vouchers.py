"""
Voucher API routes.
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_current_principal, get_voucher_service, require_admin
from application.dtos.auth import Principal
from application.dtos.vouchers import VoucherCreate, VoucherDTO, VoucherQuoteDTO, VoucherQuoteRequest
from application.services.voucher_service import VoucherApplicationService
from core.i18n import t
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/vouchers", tags=["Vouchers"])


@router.post("", summary="Create voucher", response_model=ApiResponse[VoucherDTO])
async def create_voucher(
    payload: VoucherCreate,
    _: Principal = Depends(require_admin),
    service: VoucherApplicationService = Depends(get_voucher_service),
):
    voucher = await service.create_voucher(payload)
    return success_response(data=voucher, message=t("voucher.created"))


@router.post("/quote", summary="Preview a voucher discount", response_model=ApiResponse[VoucherQuoteDTO])
async def quote_voucher(
    payload: VoucherQuoteRequest,
    _: Principal = Depends(get_current_principal),
    service: VoucherApplicationService = Depends(get_voucher_service),
):
    quote = await service.quote(payload)
    return success_response(data=quote, message=t("voucher.quote"))


@router.get("/{code}", summary="Voucher detail", response_model=ApiResponse[VoucherDTO])
async def get_voucher(
    code: str,
    _: Principal = Depends(get_current_principal),
    service: VoucherApplicationService = Depends(get_voucher_service),
):
    voucher = await service.get_voucher(code)
    return success_response(data=voucher, message=t("voucher.detail"))
