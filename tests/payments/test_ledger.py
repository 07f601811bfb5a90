from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.order.entity import Order, OrderItem, OrderPaymentStatus
from domain.payment.entity import GatewayInfo, Payment, PaymentMethod, PaymentStatus
from domain.payment.ledger import PaymentLedger, derive_payment_status
from domain.order.events import OrderPaymentStatusChanged
from domain.payment.events import PaymentRecorded


@pytest.mark.parametrize(
    "completed, expected",
    [
        ("0", OrderPaymentStatus.PENDING),
        ("1", OrderPaymentStatus.PARTIAL_PAID),
        ("149999", OrderPaymentStatus.PARTIAL_PAID),
        ("150000", OrderPaymentStatus.PAID),
        ("200000", OrderPaymentStatus.PAID),
    ],
)
def test_derive_payment_status(completed, expected):
    assert derive_payment_status(Decimal(completed), Decimal("150000")) == expected


def test_payment_amount_must_be_positive():
    with pytest.raises(DomainValidationException):
        Payment(id=None, code="PAY1", order_id=1, amount=Decimal("0"),
                method=PaymentMethod.CASH, status=PaymentStatus.COMPLETED)


def test_gateway_metadata_only_on_gateway_payments():
    with pytest.raises(DomainValidationException):
        Payment(id=None, code="PAY1", order_id=1, amount=Decimal("10"),
                method=PaymentMethod.CASH, status=PaymentStatus.PENDING,
                gateway=GatewayInfo(provider="vnpay", txn_ref="DH1_1"))


def test_payment_status_moves():
    payment = Payment(id=1, code="PAY1", order_id=1, amount=Decimal("10"),
                      method=PaymentMethod.BANK_TRANSFER, status=PaymentStatus.PENDING)
    payment.mark_completed()
    assert payment.paid_at is not None
    with pytest.raises(DomainValidationException):
        payment.mark_failed("late failure")
    payment.mark_refunded("returned")
    assert payment.status == PaymentStatus.REFUNDED
    with pytest.raises(DomainValidationException):
        payment.mark_completed()


def test_completion_merges_callback_metadata():
    payment = Payment(id=1, code="PAY1", order_id=1, amount=Decimal("10"),
                      method=PaymentMethod.VNPAY, status=PaymentStatus.PENDING,
                      gateway=GatewayInfo(provider="vnpay", txn_ref="DH1_1", order_info="Thanh toan"))
    payment.mark_completed(GatewayInfo(provider="vnpay", txn_ref="DH1_1", transaction_no="777", bank_code="NCB"))
    assert payment.gateway.transaction_no == "777"
    assert payment.gateway.bank_code == "NCB"
    assert payment.gateway.order_info == "Thanh toan"


@pytest.mark.asyncio
async def test_ledger_records_and_recomputes(uow_factory):
    async with uow_factory() as uow:
        order = await uow.order_repository.create(Order.place(
            customer_id="cus-1",
            items=[OrderItem(product_id="SP01", quantity=1, unit_price=Decimal("100000"))],
            payment_method=PaymentMethod.CASH,
        ))
        ledger = PaymentLedger(uow.payment_repository, uow.order_repository)

        await ledger.record_payment(order, Decimal("40000"), PaymentMethod.CASH, PaymentStatus.COMPLETED)
        assert await ledger.recompute_payment_status(order) == OrderPaymentStatus.PARTIAL_PAID

        await ledger.record_payment(order, Decimal("60000"), PaymentMethod.BANK_TRANSFER, PaymentStatus.PENDING)
        assert await ledger.recompute_payment_status(order) == OrderPaymentStatus.PARTIAL_PAID

        await ledger.record_payment(order, Decimal("60000"), PaymentMethod.CASH, PaymentStatus.COMPLETED)
        assert await ledger.recompute_payment_status(order) == OrderPaymentStatus.PAID

        events = ledger.clear_events()
        assert sum(isinstance(e, PaymentRecorded) for e in events) == 3
        changes = [(e.from_status, e.to_status) for e in events if isinstance(e, OrderPaymentStatusChanged)]
        assert changes == [("PENDING", "PARTIAL_PAID"), ("PARTIAL_PAID", "PAID")]
        assert ledger.clear_events() == []

        stored = await uow.order_repository.get_by_id(order.id)
        assert stored.payment_status == OrderPaymentStatus.PAID
        assert stored.version == 2
