from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

from domain.common.exceptions import ConcurrentModificationException, DuplicatePaymentException
from domain.order import state_machine
from domain.order.entity import Order, OrderItem, OrderPaymentStatus, OrderStatus, ShippingAddress
from domain.payment.entity import GatewayInfo, Payment, PaymentMethod, PaymentStatus, generate_payment_code
from domain.voucher.entity import Voucher, VoucherType
from infrastructure.database import build_engine
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


def _uow(session_factory, **kwargs) -> SQLAlchemyUnitOfWork:
    return SQLAlchemyUnitOfWork(session_factory=session_factory, **kwargs)


def _new_order() -> Order:
    return Order.place(
        customer_id="cus-1",
        items=[
            OrderItem(product_id="SP01", name="Ao thun", quantity=2, unit_price=Decimal("75000")),
            OrderItem(product_id="SP02", variant_id="XL", quantity=1, unit_price=Decimal("50000")),
        ],
        payment_method=PaymentMethod.VNPAY,
        shipping_address=ShippingAddress(recipient_name="Nguyen Van A", phone="0901234567", address_line="12 Le Loi"),
    )


def _gateway_payment(order: Order, txn_ref: str, transaction_no=None, status=PaymentStatus.PENDING) -> Payment:
    return Payment(
        id=None,
        code=generate_payment_code(),
        order_id=order.id,
        amount=order.total,
        method=PaymentMethod.VNPAY,
        status=status,
        gateway=GatewayInfo(provider="vnpay", txn_ref=txn_ref, transaction_no=transaction_no),
    )


@pytest.mark.asyncio
async def test_order_round_trip(session_factory):
    async with _uow(session_factory) as uow:
        created = await uow.order_repository.create(_new_order())

    async with _uow(session_factory, readonly=True) as uow:
        loaded = await uow.order_repository.get_by_code(created.code)

    assert loaded.id == created.id
    assert loaded.total == Decimal("200000")
    assert [i.product_id for i in loaded.items] == ["SP01", "SP02"]
    assert loaded.shipping_address.phone == "0901234567"
    assert loaded.history[0].status == OrderStatus.CHO_XAC_NHAN
    assert loaded.history[0].id is not None
    assert loaded.created_at.tzinfo is not None
    assert loaded.version == 0


@pytest.mark.asyncio
async def test_versioned_update_appends_history(session_factory):
    async with _uow(session_factory) as uow:
        order = await uow.order_repository.create(_new_order())

    async with _uow(session_factory) as uow:
        order = await uow.order_repository.get_by_id(order.id)
        state_machine.transition(order, OrderStatus.CHO_GIAO_HANG, "confirmed", "staff-1")
        await uow.order_repository.update(order)
        assert order.version == 1

    async with _uow(session_factory, readonly=True) as uow:
        loaded = await uow.order_repository.get_by_id(order.id)
    assert loaded.status == OrderStatus.CHO_GIAO_HANG
    assert loaded.confirmed_at is not None
    assert [h.status for h in loaded.history] == [OrderStatus.CHO_XAC_NHAN, OrderStatus.CHO_GIAO_HANG]
    assert loaded.version == 1


@pytest.mark.asyncio
async def test_stale_version_is_rejected(session_factory):
    async with _uow(session_factory) as uow:
        order = await uow.order_repository.create(_new_order())

    async with _uow(session_factory) as uow:
        stale = await uow.order_repository.get_by_id(order.id)
        fresh = await uow.order_repository.get_by_id(order.id)
        fresh.apply_payment_status(OrderPaymentStatus.PARTIAL_PAID)
        await uow.order_repository.update(fresh)

        stale.apply_payment_status(OrderPaymentStatus.PAID)
        with pytest.raises(ConcurrentModificationException):
            await uow.order_repository.update(stale)

    async with _uow(session_factory, readonly=True) as uow:
        loaded = await uow.order_repository.get_by_id(order.id)
    assert loaded.payment_status == OrderPaymentStatus.PARTIAL_PAID


@pytest.mark.asyncio
async def test_duplicate_transaction_number_keeps_unit_of_work_usable(session_factory):
    async with _uow(session_factory) as uow:
        order = await uow.order_repository.create(_new_order())
        await uow.payment_repository.create(
            _gateway_payment(order, f"{order.code}_1", "777", PaymentStatus.COMPLETED)
        )

    async with _uow(session_factory) as uow:
        with pytest.raises(DuplicatePaymentException):
            await uow.payment_repository.create(
                _gateway_payment(order, f"{order.code}_2", "777", PaymentStatus.COMPLETED)
            )
        # the savepoint rolled back only the failed insert
        await uow.payment_repository.create(_gateway_payment(order, f"{order.code}_3"))

    async with _uow(session_factory, readonly=True) as uow:
        payments = await uow.payment_repository.list_by_order(order.id)
        completed = await uow.payment_repository.sum_completed_by_order(order.id)
        seen = await uow.payment_repository.get_by_transaction_no("vnpay", "777")
    assert [p.txn_ref for p in payments] == [f"{order.code}_1", f"{order.code}_3"]
    assert completed == Decimal("200000")
    assert seen.txn_ref == f"{order.code}_1"


@pytest.mark.asyncio
async def test_payment_update_persists_gateway_metadata(session_factory):
    async with _uow(session_factory) as uow:
        order = await uow.order_repository.create(_new_order())
        payment = await uow.payment_repository.create(_gateway_payment(order, f"{order.code}_1"))

    async with _uow(session_factory) as uow:
        payment = await uow.payment_repository.get_by_txn_ref(f"{order.code}_1")
        payment.mark_completed(GatewayInfo(provider="vnpay", txn_ref=payment.txn_ref, transaction_no="888", bank_code="NCB"))
        await uow.payment_repository.update(payment)

    async with _uow(session_factory, readonly=True) as uow:
        loaded = await uow.payment_repository.get_by_id(payment.id)
    assert loaded.status == PaymentStatus.COMPLETED
    assert loaded.gateway.transaction_no == "888"
    assert loaded.gateway.bank_code == "NCB"
    assert loaded.paid_at is not None


@pytest.mark.asyncio
async def test_voucher_usage_is_capped(session_factory):
    now = datetime.now(timezone.utc)
    async with _uow(session_factory) as uow:
        await uow.voucher_repository.create(Voucher(
            id=None, code="once", name="One use", type=VoucherType.FIXED, value=Decimal("10000"),
            quantity=1, start_at=now - timedelta(days=1), end_at=now + timedelta(days=1),
        ))

    async with _uow(session_factory) as uow:
        assert await uow.voucher_repository.increment_usage("ONCE") is True
        assert await uow.voucher_repository.increment_usage("ONCE") is False

    async with _uow(session_factory, readonly=True) as uow:
        voucher = await uow.voucher_repository.get_by_code("once")
    assert voucher.used_count == 1
    assert voucher.remaining == 0


@pytest.mark.asyncio
async def test_stale_payment_write_cannot_overwrite_newer_status(session_factory):
    async with _uow(session_factory) as uow:
        order = await uow.order_repository.create(_new_order())
        payment = await uow.payment_repository.create(_gateway_payment(order, f"{order.code}_1"))

    async with _uow(session_factory, readonly=True) as uow:
        stale = await uow.payment_repository.get_by_id(payment.id)

    async with _uow(session_factory) as uow:
        fresh = await uow.payment_repository.get_by_id(payment.id)
        fresh.mark_completed(GatewayInfo(provider="vnpay", txn_ref=fresh.txn_ref, transaction_no="999"))
        completed = await uow.payment_repository.update(fresh)
    assert completed.version == 1

    async with _uow(session_factory) as uow:
        stale.mark_failed("expired at counter")
        with pytest.raises(ConcurrentModificationException):
            await uow.payment_repository.update(stale)

    async with _uow(session_factory, readonly=True) as uow:
        loaded = await uow.payment_repository.get_by_id(payment.id)
    assert loaded.status == PaymentStatus.COMPLETED
    assert loaded.gateway.transaction_no == "999"
    assert loaded.failure_reason is None
    assert loaded.version == 1


@pytest.mark.asyncio
async def test_declined_payments_without_transaction_number_coexist(session_factory):
    async with _uow(session_factory) as uow:
        first = await uow.order_repository.create(_new_order())
        second = await uow.order_repository.create(_new_order())
        for order in (first, second):
            await uow.payment_repository.create(
                _gateway_payment(order, f"{order.code}_1", None, PaymentStatus.FAILED)
            )

    async with _uow(session_factory, readonly=True) as uow:
        first_payments = await uow.payment_repository.list_by_order(first.id)
        second_payments = await uow.payment_repository.list_by_order(second.id)
    assert [p.status for p in first_payments + second_payments] == [PaymentStatus.FAILED, PaymentStatus.FAILED]
