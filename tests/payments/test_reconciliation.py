import asyncio
from decimal import Decimal

import pytest

from application.dtos.orders import OrderCancelRequest, OrderCreate, OrderItemIn
from application.dtos.payments import (
    CheckoutRequest,
    GatewayTransactionDTO,
    ManualPaymentCreate,
    PaymentStatusUpdate,
    ReconciliationOutcome,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_service import GATEWAY_ACTOR, PaymentApplicationService, ipn_ack
from core.exceptions import PermissionDeniedException
from domain.common.exceptions import (
    ConcurrentModificationException,
    OrderAlreadyPaidException,
    OrderClosedException,
    PaymentNotFoundException,
)
from domain.order.entity import OrderPaymentStatus, OrderStatus
from domain.payment.entity import PaymentMethod, PaymentStatus

from conftest import FIXED_NOW


async def _place_order(uow_factory, principal, *, unit_price="75000", quantity=2):
    service = OrderApplicationService(uow_factory)
    return await service.place_order(
        OrderCreate(
            items=[OrderItemIn(product_id="SP01", name="Ao thun", quantity=quantity, unit_price=Decimal(unit_price))],
            payment_method=PaymentMethod.VNPAY,
        ),
        principal,
    )


@pytest.fixture
def payments(uow_factory, vnpay_client):
    return PaymentApplicationService(
        uow_factory,
        vnpay_client,
        clock=lambda: FIXED_NOW,
        reconcile_attempts=3,
    )


def _payments_of(store, order_id):
    return [p for p in store.payments.values() if p.order_id == order_id]


@pytest.mark.asyncio
async def test_checkout_creates_pending_payment_for_outstanding_balance(payments, uow_factory, customer, store):
    order = await _place_order(uow_factory, customer)

    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer, client_ip="::1")

    assert checkout.amount == Decimal("150000")
    assert checkout.txn_ref.startswith(f"{order.code}_")
    assert "vnp_Amount=15000000" in checkout.payment_url
    (pending,) = _payments_of(store, order.id)
    assert pending.status == PaymentStatus.PENDING
    assert pending.method == PaymentMethod.VNPAY
    assert pending.txn_ref == checkout.txn_ref


@pytest.mark.asyncio
async def test_successful_callback_confirms_payment_and_advances_order(
    payments, uow_factory, customer, store, sign_callback
):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)

    result = await payments.reconcile_callback(sign_callback(checkout.txn_ref, 15000000))

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert ipn_ack(result).rsp_code == "00"
    (payment,) = _payments_of(store, order.id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway.transaction_no == "14226112"
    assert payment.gateway.bank_code == "NCB"
    assert payment.paid_at is not None

    stored = store.orders[order.id]
    assert stored.payment_status == OrderPaymentStatus.PAID
    assert stored.status == OrderStatus.CHO_GIAO_HANG
    assert stored.confirmed_at is not None
    assert [h.status for h in stored.history] == [OrderStatus.CHO_XAC_NHAN, OrderStatus.CHO_GIAO_HANG]
    assert stored.history[-1].actor == GATEWAY_ACTOR


@pytest.mark.asyncio
async def test_replayed_callback_is_acknowledged_without_writing(
    payments, uow_factory, customer, store, sign_callback
):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    params = sign_callback(checkout.txn_ref, 15000000)
    await payments.reconcile_callback(params)
    version = store.orders[order.id].version

    result = await payments.reconcile_callback(params)

    assert result.outcome == ReconciliationOutcome.ALREADY_CONFIRMED
    assert ipn_ack(result).rsp_code == "02"
    assert len(_payments_of(store, order.id)) == 1
    assert store.orders[order.id].version == version
    assert len(store.orders[order.id].history) == 2


@pytest.mark.asyncio
async def test_concurrent_deliveries_apply_once(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    params = sign_callback(checkout.txn_ref, 15000000)

    results = await asyncio.gather(
        payments.reconcile_callback(params),
        payments.reconcile_callback(dict(params)),
    )

    assert sorted(r.outcome.value for r in results) == ["ALREADY_CONFIRMED", "CONFIRMED"]
    completed = [p for p in _payments_of(store, order.id) if p.status == PaymentStatus.COMPLETED]
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_amount_mismatch_leaves_payment_pending(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)

    result = await payments.reconcile_callback(sign_callback(checkout.txn_ref, 10000000))

    assert result.outcome == ReconciliationOutcome.INVALID_AMOUNT
    assert ipn_ack(result).rsp_code == "04"
    (payment,) = _payments_of(store, order.id)
    assert payment.status == PaymentStatus.PENDING
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PENDING


@pytest.mark.asyncio
async def test_forged_callback_touches_nothing(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    params = sign_callback(checkout.txn_ref, 15000000, secret="not-the-merchant-secret")
    commits = store.commits

    result = await payments.reconcile_callback(params)

    assert result.outcome == ReconciliationOutcome.INVALID_SIGNATURE
    assert ipn_ack(result).rsp_code == "97"
    assert store.commits == commits
    assert _payments_of(store, order.id)[0].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_order_reference(payments, sign_callback):
    result = await payments.reconcile_callback(sign_callback("DH000000FFFFFF_1729308600000", 15000000))
    assert result.outcome == ReconciliationOutcome.ORDER_NOT_FOUND
    assert ipn_ack(result).rsp_code == "01"


@pytest.mark.asyncio
async def test_declined_callback_fails_pending_payment(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)

    result = await payments.reconcile_callback(
        sign_callback(checkout.txn_ref, 15000000, response_code="24", transaction_status="02")
    )

    assert result.outcome == ReconciliationOutcome.DECLINED
    assert ipn_ack(result).rsp_code == "00"
    (payment,) = _payments_of(store, order.id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway response 24"
    stored = store.orders[order.id]
    # a failed attempt never moves the derived status
    assert stored.payment_status == OrderPaymentStatus.PENDING
    assert stored.status == OrderStatus.CHO_XAC_NHAN


@pytest.mark.asyncio
async def test_declines_without_transaction_number_stay_per_order(
    payments, uow_factory, customer, store, sign_callback
):
    first = await _place_order(uow_factory, customer)
    second = await _place_order(uow_factory, customer, unit_price="50000")
    first_checkout = await payments.create_checkout(CheckoutRequest(order_id=first.id), customer)
    second_checkout = await payments.create_checkout(CheckoutRequest(order_id=second.id), customer)

    results = [
        await payments.reconcile_callback(
            sign_callback(checkout.txn_ref, amount, response_code="24", transaction_status="02", transaction_no="0")
        )
        for checkout, amount in ((first_checkout, 15000000), (second_checkout, 10000000))
    ]

    assert [r.outcome for r in results] == [ReconciliationOutcome.DECLINED, ReconciliationOutcome.DECLINED]
    assert [ipn_ack(r).rsp_code for r in results] == ["00", "00"]
    assert [r.order_id for r in results] == [first.id, second.id]
    assert [r.order_code for r in results] == [first.code, second.code]
    for order in (first, second):
        (payment,) = _payments_of(store, order.id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.gateway.transaction_no is None


@pytest.mark.asyncio
async def test_settled_transaction_number_is_not_applied_twice(
    payments, uow_factory, customer, store, sign_callback
):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    await payments.reconcile_callback(sign_callback(checkout.txn_ref, 15000000))

    # same gateway transaction reported under a reference we never issued
    result = await payments.reconcile_callback(sign_callback(f"{order.code}_1729308600001", 15000000))

    assert result.outcome == ReconciliationOutcome.ALREADY_CONFIRMED
    assert result.order_id == order.id
    assert len(_payments_of(store, order.id)) == 1


@pytest.mark.asyncio
async def test_callback_without_checkout_row_settles_open_balance(
    payments, uow_factory, customer, staff, store, sign_callback
):
    order = await _place_order(uow_factory, customer)
    await payments.record_manual_payment(
        ManualPaymentCreate(order_id=order.id, amount=Decimal("50000"), method="CASH"), staff
    )
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PARTIAL_PAID

    result = await payments.reconcile_callback(sign_callback(f"{order.code}_1729308600000", 10000000))

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    gateway_payments = [p for p in _payments_of(store, order.id) if p.method == PaymentMethod.VNPAY]
    assert len(gateway_payments) == 1
    assert gateway_payments[0].created_by == GATEWAY_ACTOR
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_callback_without_checkout_row_above_balance(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)

    result = await payments.reconcile_callback(sign_callback(f"{order.code}_1729308600000", 20000000))

    assert result.outcome == ReconciliationOutcome.INVALID_AMOUNT
    assert _payments_of(store, order.id) == []


@pytest.mark.asyncio
async def test_success_on_cancelled_order_is_still_recorded(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    await OrderApplicationService(uow_factory).cancel(order.id, OrderCancelRequest(note="changed mind"), customer)

    result = await payments.reconcile_callback(sign_callback(checkout.txn_ref, 15000000))

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    stored = store.orders[order.id]
    assert stored.status == OrderStatus.DA_HUY
    assert stored.payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_lost_version_race_is_retried(payments, uow_factory, customer, store, sign_callback):
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    store.order_conflicts = 1
    rollbacks = store.rollbacks

    result = await payments.reconcile_callback(sign_callback(checkout.txn_ref, 15000000))

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert store.rollbacks == rollbacks + 1
    (payment,) = _payments_of(store, order.id)
    assert payment.status == PaymentStatus.COMPLETED
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_retries_are_bounded(uow_factory, vnpay_client, customer, store, sign_callback):
    payments = PaymentApplicationService(uow_factory, vnpay_client, clock=lambda: FIXED_NOW, reconcile_attempts=2)
    order = await _place_order(uow_factory, customer)
    checkout = await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    store.order_conflicts = 10

    with pytest.raises(ConcurrentModificationException):
        await payments.reconcile_callback(sign_callback(checkout.txn_ref, 15000000))

    assert ipn_ack(None).rsp_code == "99"
    (payment,) = _payments_of(store, order.id)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_checkout_rejects_paid_order(payments, uow_factory, customer, staff):
    order = await _place_order(uow_factory, customer)
    await payments.record_manual_payment(
        ManualPaymentCreate(order_id=order.id, amount=Decimal("150000"), method="CASH"), staff
    )
    with pytest.raises(OrderAlreadyPaidException):
        await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)


@pytest.mark.asyncio
async def test_checkout_rejects_closed_order(payments, uow_factory, customer, store):
    order = await _place_order(uow_factory, customer)
    await OrderApplicationService(uow_factory).cancel(order.id, OrderCancelRequest(), customer)
    with pytest.raises(OrderClosedException):
        await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)
    assert _payments_of(store, order.id) == []


@pytest.mark.asyncio
async def test_checkout_for_someone_elses_order(payments, uow_factory, customer, other_customer):
    order = await _place_order(uow_factory, customer)
    with pytest.raises(PermissionDeniedException):
        await payments.create_checkout(CheckoutRequest(order_id=order.id), other_customer)


@pytest.mark.asyncio
async def test_bank_transfer_confirmed_by_staff(payments, uow_factory, customer, staff, store):
    order = await _place_order(uow_factory, customer)
    pending = await payments.record_manual_payment(
        ManualPaymentCreate(order_id=order.id, amount=Decimal("150000"), method="BANK_TRANSFER"), staff
    )
    assert pending.status == PaymentStatus.PENDING
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PENDING

    confirmed = await payments.update_payment_status(
        pending.id, PaymentStatusUpdate(status=PaymentStatus.COMPLETED), staff
    )

    assert confirmed.status == PaymentStatus.COMPLETED
    stored = store.orders[order.id]
    assert stored.payment_status == OrderPaymentStatus.PAID
    assert stored.status == OrderStatus.CHO_GIAO_HANG


@pytest.mark.asyncio
async def test_refund_recomputes_payment_status(payments, uow_factory, customer, staff, store):
    order = await _place_order(uow_factory, customer)
    cash = await payments.record_manual_payment(
        ManualPaymentCreate(order_id=order.id, amount=Decimal("150000"), method="CASH"), staff
    )
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PAID

    refunded = await payments.update_payment_status(
        cash.id, PaymentStatusUpdate(status=PaymentStatus.REFUNDED, reason="returned goods"), staff
    )

    assert refunded.status == PaymentStatus.REFUNDED
    assert store.orders[order.id].payment_status == OrderPaymentStatus.PENDING


@pytest.mark.asyncio
async def test_customers_cannot_record_payments(payments, uow_factory, customer):
    order = await _place_order(uow_factory, customer)
    with pytest.raises(PermissionDeniedException):
        await payments.record_manual_payment(
            ManualPaymentCreate(order_id=order.id, amount=Decimal("1000"), method="CASH"), customer
        )


@pytest.mark.asyncio
async def test_list_payments_respects_ownership(payments, uow_factory, customer, other_customer):
    order = await _place_order(uow_factory, customer)
    await payments.create_checkout(CheckoutRequest(order_id=order.id), customer)

    listed = await payments.list_payments(order.id, customer)
    assert [p.status for p in listed] == [PaymentStatus.PENDING]
    with pytest.raises(PermissionDeniedException):
        await payments.list_payments(order.id, other_customer)


class _QueryOnlyGateway:
    provider = "vnpay"

    def __init__(self):
        self.calls = []

    async def query_transaction(self, txn_ref, transaction_date, *, client_ip=None, order_info=None):
        self.calls.append((txn_ref, transaction_date, order_info))
        return GatewayTransactionDTO(txn_ref=txn_ref, response_code="00", transaction_status="00")


@pytest.mark.asyncio
async def test_query_gateway_transaction_uses_checkout_date(uow_factory, vnpay_client, customer, staff):
    checkout_service = PaymentApplicationService(uow_factory, vnpay_client, clock=lambda: FIXED_NOW)
    order = await _place_order(uow_factory, customer)
    checkout = await checkout_service.create_checkout(CheckoutRequest(order_id=order.id), customer)

    gateway = _QueryOnlyGateway()
    service = PaymentApplicationService(uow_factory, gateway, clock=lambda: FIXED_NOW)
    tx = await service.query_gateway_transaction(checkout.txn_ref, staff)

    assert tx.response_code == "00"
    ((txn_ref, transaction_date, order_info),) = gateway.calls
    assert txn_ref == checkout.txn_ref
    assert transaction_date == FIXED_NOW
    assert order_info == f"Thanh toan don hang {order.code}"

    with pytest.raises(PaymentNotFoundException):
        await service.query_gateway_transaction("DH000000FFFFFF_1", staff)
