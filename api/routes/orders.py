"""
Order API routes.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_current_principal,
    get_order_service,
    get_payment_service,
    require_staff,
)
from application.dtos.auth import Principal
from application.dtos.orders import (
    OrderCancelRequest,
    OrderCreate,
    OrderDTO,
    OrderTransitionRequest,
)
from application.dtos.payments import PaymentDTO
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentApplicationService
from core.config import settings
from core.i18n import t
from core.response import Response as ApiResponse, success_response
from domain.order.entity import OrderStatus
from domain.payment.entity import PaymentStatus


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", summary="Place order", response_model=ApiResponse[OrderDTO])
async def place_order(
    payload: OrderCreate,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    Checkout: prices the items, applies the voucher and opens the order in
    CHO_XAC_NHAN.
    """
    order = await service.place_order(payload, principal)
    return success_response(data=order, message=t("order.created"))


@router.get("/me", summary="My orders", response_model=ApiResponse[List[OrderDTO]])
async def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[OrderStatus] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    orders = await service.list_my_orders(principal, skip=skip, limit=limit, status=status)
    return success_response(data=orders, message=t("order.list"))


@router.get("/by-code/{code}", summary="Order by code", response_model=ApiResponse[OrderDTO])
async def get_order_by_code(
    code: str,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order_by_code(code, principal)
    return success_response(data=order, message=t("order.detail"))


@router.get("/{order_id}", summary="Order detail", response_model=ApiResponse[OrderDTO])
async def get_order(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id, principal)
    return success_response(data=order, message=t("order.detail"))


@router.post("/{order_id}/status", summary="Move order status", response_model=ApiResponse[OrderDTO])
async def transition_order(
    order_id: int,
    payload: OrderTransitionRequest,
    principal: Principal = Depends(require_staff),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.transition(order_id, payload, principal)
    return success_response(data=order, message=t("order.transitioned"))


@router.post("/{order_id}/cancel", summary="Cancel order", response_model=ApiResponse[OrderDTO])
async def cancel_order(
    order_id: int,
    payload: Optional[OrderCancelRequest] = None,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.cancel(order_id, payload or OrderCancelRequest(), principal)
    return success_response(data=order, message=t("order.cancelled"))


@router.get("/{order_id}/payments", summary="Payments of an order", response_model=ApiResponse[List[PaymentDTO]])
async def list_order_payments(
    order_id: int,
    status: Optional[PaymentStatus] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    payments = await service.list_payments(order_id, principal, status)
    return success_response(data=payments, message=t("payment.list"))
