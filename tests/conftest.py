"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("VNPAY__TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY__HASH_SECRET", "TESTSECRETKEY")
os.environ.setdefault("VNPAY__RETURN_URL", "http://localhost:8000/api/v1/payments/vnpay/return")

import copy
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from application.dtos.auth import Principal, Role
from core.settings import VNPaySettings
from domain.common.exceptions import (
    ConcurrentModificationException,
    DuplicatePaymentException,
    VoucherAlreadyExistsException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import OrderHistoryEntry
from domain.order.repository import OrderRepository
from domain.payment.entity import PaymentStatus
from domain.payment.repository import PaymentRepository
from domain.voucher.repository import VoucherRepository
from infrastructure.external.payments.vnpay import VNPayClient
from infrastructure.external.payments.vnpay import signature


SECRET = "TESTSECRETKEY"
TMN_CODE = "TESTTMN1"
FIXED_NOW = datetime(2024, 10, 19, 3, 30, tzinfo=timezone.utc)


class InMemoryStore:
    """Rows shared by every unit of work opened in one test."""

    def __init__(self):
        self.orders = {}
        self.payments = {}
        self.vouchers = {}
        self.ids = itertools.count(1)
        self.commits = 0
        self.rollbacks = 0
        # order updates that lose against a simulated concurrent writer
        self.order_conflicts = 0

    def snapshot(self):
        return copy.deepcopy((self.orders, self.payments, self.vouchers))

    def restore(self, snap):
        self.orders, self.payments, self.vouchers = snap


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    def _stamp_history(self, order):
        order.history = [
            entry if entry.id is not None else OrderHistoryEntry(
                id=next(self.store.ids),
                status=entry.status,
                note=entry.note,
                actor=entry.actor,
                created_at=entry.created_at,
            )
            for entry in order.history
        ]

    async def create(self, order):
        order.id = next(self.store.ids)
        self._stamp_history(order)
        self.store.orders[order.id] = copy.deepcopy(order)
        return copy.deepcopy(order)

    async def get_by_id(self, order_id):
        order = self.store.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def get_by_code(self, code):
        for order in self.store.orders.values():
            if order.code == code:
                return copy.deepcopy(order)
        return None

    async def list_by_customer(self, customer_id, skip=0, limit=100, status=None):
        orders = [
            o for o in self.store.orders.values()
            if o.customer_id == customer_id and (status is None or o.status == status)
        ]
        return [copy.deepcopy(o) for o in orders[skip:skip + limit]]

    async def update(self, order):
        stored = self.store.orders[order.id]
        if self.store.order_conflicts > 0:
            self.store.order_conflicts -= 1
            stored.version += 1
        if stored.version != order.version:
            raise ConcurrentModificationException("Order", order.id, order.version)
        self._stamp_history(order)
        order.version += 1
        self.store.orders[order.id] = copy.deepcopy(order)
        return order


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    def _ensure_unique(self, payment):
        for other in self.store.payments.values():
            if other.id == payment.id or not other.gateway or not payment.gateway:
                continue
            if other.gateway.txn_ref == payment.gateway.txn_ref:
                raise DuplicatePaymentException(payment.gateway.txn_ref)
            if (
                payment.gateway.transaction_no
                and other.gateway.provider == payment.gateway.provider
                and other.gateway.transaction_no == payment.gateway.transaction_no
            ):
                raise DuplicatePaymentException(payment.gateway.transaction_no)

    async def create(self, payment):
        self._ensure_unique(payment)
        payment.id = next(self.store.ids)
        self.store.payments[payment.id] = copy.deepcopy(payment)
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id):
        payment = self.store.payments.get(payment_id)
        return copy.deepcopy(payment) if payment else None

    async def get_by_txn_ref(self, txn_ref):
        for p in self.store.payments.values():
            if p.gateway and p.gateway.txn_ref == txn_ref:
                return copy.deepcopy(p)
        return None

    async def get_by_transaction_no(self, provider, transaction_no):
        for p in self.store.payments.values():
            if p.gateway and p.gateway.provider == provider and p.gateway.transaction_no == transaction_no:
                return copy.deepcopy(p)
        return None

    async def list_by_order(self, order_id, status=None):
        return [
            copy.deepcopy(p) for p in self.store.payments.values()
            if p.order_id == order_id and (status is None or p.status == status)
        ]

    async def sum_completed_by_order(self, order_id):
        return sum(
            (p.amount for p in self.store.payments.values()
             if p.order_id == order_id and p.status == PaymentStatus.COMPLETED),
            Decimal("0"),
        )

    async def update(self, payment):
        stored = self.store.payments[payment.id]
        if stored.version != payment.version:
            raise ConcurrentModificationException("Payment", payment.id, payment.version)
        self._ensure_unique(payment)
        payment.version += 1
        self.store.payments[payment.id] = copy.deepcopy(payment)
        return copy.deepcopy(payment)


class InMemoryVoucherRepository(VoucherRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, voucher):
        if voucher.code in self.store.vouchers:
            raise VoucherAlreadyExistsException(voucher.code)
        voucher.id = next(self.store.ids)
        self.store.vouchers[voucher.code] = copy.deepcopy(voucher)
        return copy.deepcopy(voucher)

    async def get_by_code(self, code):
        voucher = self.store.vouchers.get(code.strip().upper())
        return copy.deepcopy(voucher) if voucher else None

    async def increment_usage(self, code):
        voucher = self.store.vouchers.get(code)
        if voucher is None or voucher.used_count >= voucher.quantity:
            return False
        voucher.used_count += 1
        return True


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """Snapshot on enter, restore on rollback."""

    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = self.store.snapshot()
        self.order_repository = InMemoryOrderRepository(self.store)
        self.payment_repository = InMemoryPaymentRepository(self.store)
        self.voucher_repository = InMemoryVoucherRepository(self.store)
        return self

    async def commit(self) -> None:
        self.store.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
        self.store.rollbacks += 1
        self._committed = False


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)
    return factory


@pytest.fixture
def customer() -> Principal:
    return Principal(user_id="cus-1", role=Role.CUSTOMER)


@pytest.fixture
def other_customer() -> Principal:
    return Principal(user_id="cus-2", role=Role.CUSTOMER)


@pytest.fixture
def staff() -> Principal:
    return Principal(user_id="staff-1", role=Role.STAFF)


@pytest.fixture
def vnpay_settings() -> VNPaySettings:
    return VNPaySettings(
        tmn_code=TMN_CODE,
        hash_secret=SECRET,
        return_url="https://shop.example.vn/payment/return",
    )


@pytest.fixture
def vnpay_client(vnpay_settings) -> VNPayClient:
    return VNPayClient(vnpay_settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def sign_callback():
    """Build a signed return/IPN query string the way the gateway does."""

    def _sign(
        txn_ref: str,
        amount: int,
        *,
        response_code: str = "00",
        transaction_status: Optional[str] = "00",
        transaction_no: Optional[str] = "14226112",
        secret: str = SECRET,
        **extra,
    ) -> dict:
        params = {
            "vnp_Amount": str(amount),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14226112",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": f"Thanh toan don hang {txn_ref}",
            "vnp_PayDate": "20241019103500",
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": TMN_CODE,
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionStatus": transaction_status,
            "vnp_TxnRef": txn_ref,
        }
        params.update(extra)
        params = {k: v for k, v in params.items() if v is not None}
        params[signature.SECURE_HASH_FIELD] = signature.sign(signature.canonicalize(params), secret)
        return params

    return _sign
