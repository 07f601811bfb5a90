"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API layer), keeping dependencies one-way.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Mapping, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from application.dtos.auth import Principal
from application.dtos.payments import (
    CallbackResult,
    CheckoutRequest,
    CheckoutResponse,
    GatewayTransactionDTO,
    IpnAck,
    ManualPaymentCreate,
    PaymentDTO,
    PaymentRequest,
    PaymentStatusUpdate,
    ReconciliationOutcome,
    ReconciliationResult,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.access import ensure_can_access_order, ensure_staff
from application.services.events import publish
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import (
    ConcurrentModificationException,
    DuplicatePaymentException,
    OrderAlreadyPaidException,
    PaymentNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderPaymentStatus
from domain.order.service import OrderDomainService
from domain.payment.entity import GatewayInfo, Payment, PaymentMethod, PaymentStatus
from domain.payment.ledger import PaymentLedger
from domain.payment.service import PaymentDomainService
from shared.codes.payment_codes import IPN_MESSAGES, IpnResponseCode


logger = get_logger(__name__)

GATEWAY_ACTOR = "gateway"

_IPN_CODE_BY_OUTCOME = {
    ReconciliationOutcome.CONFIRMED: IpnResponseCode.CONFIRM_SUCCESS,
    # a declined payment is still a successfully processed notification
    ReconciliationOutcome.DECLINED: IpnResponseCode.CONFIRM_SUCCESS,
    ReconciliationOutcome.ALREADY_CONFIRMED: IpnResponseCode.ALREADY_CONFIRMED,
    ReconciliationOutcome.ORDER_NOT_FOUND: IpnResponseCode.ORDER_NOT_FOUND,
    ReconciliationOutcome.INVALID_AMOUNT: IpnResponseCode.INVALID_AMOUNT,
    ReconciliationOutcome.INVALID_SIGNATURE: IpnResponseCode.INVALID_SIGNATURE,
}


def order_code_from_txn_ref(txn_ref: str) -> str:
    """``<order code>_<epoch ms>`` -> order code (a bare code is returned as is)."""
    return txn_ref.rsplit("_", 1)[0]


def build_txn_ref(order_code: str, now: datetime) -> str:
    return f"{order_code}_{int(now.timestamp() * 1000)}"


def ipn_ack(result: Optional[ReconciliationResult]) -> IpnAck:
    """Map a reconciliation result onto the gateway's IPN acknowledgement."""
    code = IpnResponseCode.UNKNOWN_ERROR if result is None else _IPN_CODE_BY_OUTCOME[result.outcome]
    return IpnAck(rsp_code=code.value, message=IPN_MESSAGES[code])


class PaymentApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        reconcile_attempts: Optional[int] = None,
        expire_minutes: Optional[int] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._reconcile_attempts = max(1, reconcile_attempts or payment_settings.reconcile_retry)
        self._expire_minutes = expire_minutes if expire_minutes is not None else payment_settings.vnpay.expire_minutes

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    async def create_checkout(
        self,
        req: CheckoutRequest,
        principal: Principal,
        client_ip: Optional[str] = None,
    ) -> CheckoutResponse:
        """Create a PENDING gateway payment for the outstanding balance and sign its URL."""
        async with self._uow_factory() as uow:
            order = await OrderDomainService(uow.order_repository).get_order(req.order_id)
            ensure_can_access_order(order, principal)
            PaymentDomainService.ensure_order_accepts_payments(order)
            if order.is_fully_paid:
                raise OrderAlreadyPaidException(order.code)
            completed = await uow.payment_repository.sum_completed_by_order(order.id)
            outstanding = order.total - completed
            if outstanding <= 0:
                raise OrderAlreadyPaidException(order.code)

            now = self._clock()
            txn_ref = build_txn_ref(order.code, now)
            order_info = f"Thanh toan don hang {order.code}"
            expire_at = now + timedelta(minutes=self._expire_minutes) if self._expire_minutes else None
            # signing first: an unsignable request must not leave a pending row behind
            payment_url = self.gateway.build_payment_url(PaymentRequest(
                amount=outstanding,
                txn_ref=txn_ref,
                order_info=order_info,
                client_ip=client_ip,
                return_url=req.return_url,
                locale=req.locale,
                bank_code=req.bank_code,
                created_at=now,
                expire_at=expire_at,
            ))

            ledger = PaymentLedger(uow.payment_repository, uow.order_repository)
            payment = await ledger.record_payment(
                order,
                outstanding,
                PaymentMethod.VNPAY,
                PaymentStatus.PENDING,
                gateway=GatewayInfo(provider=self.gateway.provider, txn_ref=txn_ref, order_info=order_info),
                actor=principal.user_id,
                now=now,
            )
            publish(ledger.clear_events())

        logger.info(
            "payment_checkout_created",
            order_id=order.id,
            payment_id=payment.id,
            txn_ref=txn_ref,
            amount=str(outstanding),
        )
        return CheckoutResponse(
            payment_url=payment_url,
            txn_ref=txn_ref,
            payment_id=payment.id,
            payment_code=payment.code,
            amount=outstanding,
            expire_at=expire_at,
        )

    # ------------------------------------------------------------------
    # Return / IPN reconciliation
    # ------------------------------------------------------------------
    async def reconcile_callback(self, params: Mapping[str, str]) -> ReconciliationResult:
        """Verify a gateway callback and apply it exactly once.

        Safe to call for both the browser return and the IPN; replays are
        acknowledged without writing.
        """
        verification = self.gateway.verify_callback(params)
        if not verification.authentic or verification.result is None:
            return ReconciliationResult(
                outcome=ReconciliationOutcome.INVALID_SIGNATURE,
                txn_ref=params.get("vnp_TxnRef"),
                response_code=params.get("vnp_ResponseCode"),
            )
        callback = verification.result

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._reconcile_attempts),
            wait=wait_random(min=0, max=0.05),
            retry=retry_if_exception_type(ConcurrentModificationException),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "payment_reconcile_retry",
                        txn_ref=callback.txn_ref,
                        attempt=attempt.retry_state.attempt_number,
                    )
                try:
                    result = await self._reconcile_once(callback)
                except DuplicatePaymentException:
                    # lost an insert race against a concurrent delivery of the same callback
                    result = ReconciliationResult(
                        outcome=ReconciliationOutcome.ALREADY_CONFIRMED,
                        txn_ref=callback.txn_ref,
                        response_code=callback.response_code,
                    )
        logger.info(
            "payment_reconciled",
            txn_ref=callback.txn_ref,
            outcome=result.outcome.value,
            order_id=result.order_id,
            payment_id=result.payment_id,
        )
        return result

    async def _reconcile_once(self, callback: CallbackResult) -> ReconciliationResult:
        provider = self.gateway.provider
        gateway_info = GatewayInfo(
            provider=provider,
            txn_ref=callback.txn_ref,
            transaction_no=callback.transaction_no,
            response_code=callback.response_code,
            transaction_status=callback.transaction_status,
            bank_code=callback.bank_code,
            bank_tran_no=callback.bank_tran_no,
            card_type=callback.card_type,
            pay_date=callback.pay_date,
            order_info=callback.order_info,
        )

        async with self._uow_factory() as uow:
            payments = uow.payment_repository
            order_service = OrderDomainService(uow.order_repository)

            # only a settled transaction carries a number unique to one payment
            if callback.is_success and callback.transaction_no:
                seen = await payments.get_by_transaction_no(provider, callback.transaction_no)
                if seen is not None:
                    order = await uow.order_repository.get_by_id(seen.order_id)
                    return self._result(ReconciliationOutcome.ALREADY_CONFIRMED, callback, order, seen)

            payment = await payments.get_by_txn_ref(callback.txn_ref)
            if payment is not None:
                order = await uow.order_repository.get_by_id(payment.order_id)
            else:
                order = await uow.order_repository.get_by_code(order_code_from_txn_ref(callback.txn_ref))
            if order is None:
                logger.warning("payment_callback_order_missing", txn_ref=callback.txn_ref)
                return self._result(ReconciliationOutcome.ORDER_NOT_FOUND, callback)

            payment_service = PaymentDomainService(payments)
            ledger = PaymentLedger(payments, uow.order_repository)

            if payment is not None:
                if not payment.is_pending:
                    return self._result(ReconciliationOutcome.ALREADY_CONFIRMED, callback, order, payment)
                if callback.amount != payment.amount:
                    logger.warning(
                        "payment_callback_amount_mismatch",
                        txn_ref=callback.txn_ref,
                        expected=str(payment.amount),
                        received=str(callback.amount),
                    )
                    return self._result(ReconciliationOutcome.INVALID_AMOUNT, callback, order, payment)
                if callback.is_success:
                    if order.is_closed:
                        logger.warning("payment_completed_on_closed_order", order_id=order.id, status=order.status.value)
                    payment = await payment_service.complete(payment, gateway_info)
                else:
                    reason = f"gateway response {callback.response_code}"
                    payment = await payment_service.fail(payment, reason, gateway_info)
            else:
                # no checkout row for this reference: record it against the open balance
                if not callback.is_success:
                    return self._result(ReconciliationOutcome.DECLINED, callback, order)
                if order.is_closed or order.is_fully_paid:
                    return self._result(ReconciliationOutcome.ALREADY_CONFIRMED, callback, order)
                completed = await payments.sum_completed_by_order(order.id)
                if callback.amount <= 0 or callback.amount > order.total - completed:
                    logger.warning(
                        "payment_callback_amount_mismatch",
                        txn_ref=callback.txn_ref,
                        outstanding=str(order.total - completed),
                        received=str(callback.amount),
                    )
                    return self._result(ReconciliationOutcome.INVALID_AMOUNT, callback, order)
                payment = await ledger.record_payment(
                    order,
                    callback.amount,
                    PaymentMethod.VNPAY,
                    PaymentStatus.COMPLETED,
                    gateway=gateway_info,
                    actor=GATEWAY_ACTOR,
                    now=self._clock(),
                )

            await self._settle(order, ledger, order_service, actor=GATEWAY_ACTOR)
            publish(payment_service.clear_events())
            publish(ledger.clear_events())
            publish(order_service.clear_events())

            outcome = (
                ReconciliationOutcome.CONFIRMED
                if payment.status == PaymentStatus.COMPLETED
                else ReconciliationOutcome.DECLINED
            )
            return self._result(outcome, callback, order, payment)

    async def _settle(
        self,
        order: Order,
        ledger: PaymentLedger,
        order_service: OrderDomainService,
        *,
        actor: Optional[str],
    ) -> OrderPaymentStatus:
        """Recompute the payment status and take at most one order step."""
        status = await ledger.recompute_payment_status(order)
        if status == OrderPaymentStatus.PAID:
            await order_service.advance_after_payment(order, "Payment received", actor)
        return status

    @staticmethod
    def _result(
        outcome: ReconciliationOutcome,
        callback: CallbackResult,
        order: Optional[Order] = None,
        payment: Optional[Payment] = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            outcome=outcome,
            txn_ref=callback.txn_ref,
            order_id=order.id if order else None,
            order_code=order.code if order else None,
            payment_id=payment.id if payment else None,
            payment_status=payment.status if payment else None,
            order_payment_status=order.payment_status.value if order else None,
            order_status=order.status.value if order else None,
            response_code=callback.response_code,
        )

    # ------------------------------------------------------------------
    # Staff operations
    # ------------------------------------------------------------------
    async def record_manual_payment(self, data: ManualPaymentCreate, principal: Principal) -> PaymentDTO:
        """Cash is taken on the spot; transfers and COD wait for confirmation."""
        ensure_staff(principal)
        method = PaymentMethod(data.method)
        status = PaymentStatus.COMPLETED if method == PaymentMethod.CASH else PaymentStatus.PENDING
        async with self._uow_factory() as uow:
            order_service = OrderDomainService(uow.order_repository)
            order = await order_service.get_order(data.order_id)
            PaymentDomainService.ensure_order_accepts_payments(order)
            ledger = PaymentLedger(uow.payment_repository, uow.order_repository)
            payment = await ledger.record_payment(
                order,
                data.amount,
                method,
                status,
                note=data.note,
                actor=principal.user_id,
                now=self._clock(),
            )
            await self._settle(order, ledger, order_service, actor=principal.user_id)
            publish(ledger.clear_events())
            publish(order_service.clear_events())
            return PaymentDTO.from_entity(payment)

    async def update_payment_status(
        self,
        payment_id: int,
        data: PaymentStatusUpdate,
        principal: Principal,
    ) -> PaymentDTO:
        ensure_staff(principal)
        async with self._uow_factory() as uow:
            payment_service = PaymentDomainService(uow.payment_repository)
            order_service = OrderDomainService(uow.order_repository)
            payment = await payment_service.get_payment(payment_id)
            payment = await payment_service.change_status(payment, data.status, data.reason)
            order = await order_service.get_order(payment.order_id)
            ledger = PaymentLedger(uow.payment_repository, uow.order_repository)
            await self._settle(order, ledger, order_service, actor=principal.user_id)
            publish(payment_service.clear_events())
            publish(ledger.clear_events())
            publish(order_service.clear_events())
            logger.info(
                "payment_status_changed",
                payment_id=payment.id,
                status=payment.status.value,
                actor=principal.user_id,
            )
            return PaymentDTO.from_entity(payment)

    async def list_payments(
        self,
        order_id: int,
        principal: Principal,
        status: Optional[PaymentStatus] = None,
    ) -> List[PaymentDTO]:
        async with self._uow_factory(readonly=True) as uow:
            order = await OrderDomainService(uow.order_repository).get_order(order_id)
            ensure_can_access_order(order, principal)
            payments = await uow.payment_repository.list_by_order(order_id, status)
            return [PaymentDTO.from_entity(p) for p in payments]

    async def query_gateway_transaction(
        self,
        txn_ref: str,
        principal: Principal,
        client_ip: Optional[str] = None,
    ) -> GatewayTransactionDTO:
        """Ask the gateway for the state of one of our references (querydr)."""
        ensure_staff(principal)
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_txn_ref(txn_ref)
        if payment is None:
            raise PaymentNotFoundException(txn_ref=txn_ref)
        logger.info("payment_gateway_query", txn_ref=txn_ref, actor=principal.user_id)
        return await self.gateway.query_transaction(
            txn_ref,
            payment.created_at or self._clock(),
            client_ip=client_ip,
            order_info=payment.gateway.order_info if payment.gateway else None,
        )

    async def aclose(self) -> None:
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
