from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.dtos.vouchers import VoucherCreate, VoucherQuoteRequest
from application.services.voucher_service import VoucherApplicationService
from domain.common.exceptions import (
    DomainValidationException,
    VoucherAlreadyExistsException,
    VoucherNotApplicableException,
    VoucherNotFoundException,
)
from domain.voucher.entity import Voucher, VoucherStatus, VoucherType


NOW = datetime(2024, 10, 19, 3, 30, tzinfo=timezone.utc)


def _voucher(**overrides) -> Voucher:
    data = dict(
        id=1,
        code="sale10",
        name="Sale 10%",
        type=VoucherType.PERCENTAGE,
        value=Decimal("10"),
        quantity=5,
        start_at=NOW - timedelta(days=1),
        end_at=NOW + timedelta(days=1),
    )
    data.update(overrides)
    return Voucher(**data)


def test_code_is_normalized():
    assert _voucher(code="  sale10 ").code == "SALE10"


def test_percentage_discount_is_rounded_and_capped():
    voucher = _voucher(value=Decimal("15"), max_discount=Decimal("20000"))
    assert voucher.compute_discount(Decimal("99999")) == Decimal("15000")
    assert voucher.compute_discount(Decimal("500000")) == Decimal("20000")


def test_fixed_discount_never_exceeds_order_value():
    voucher = _voucher(type=VoucherType.FIXED, value=Decimal("50000"))
    assert voucher.compute_discount(Decimal("120000")) == Decimal("50000")
    assert voucher.compute_discount(Decimal("30000")) == Decimal("30000")


def test_percentage_above_hundred_rejected():
    with pytest.raises(DomainValidationException):
        _voucher(value=Decimal("101"))


@pytest.mark.parametrize(
    "overrides, order_value, reason",
    [
        ({"status": VoucherStatus.INACTIVE}, "100000", "voucher is not active"),
        ({"start_at": NOW + timedelta(hours=1), "end_at": NOW + timedelta(days=2)}, "100000", "voucher is not yet valid"),
        ({"start_at": NOW - timedelta(days=2), "end_at": NOW - timedelta(seconds=1)}, "100000", "voucher has expired"),
        ({"used_count": 5}, "100000", "voucher usage limit reached"),
        ({"min_order_value": Decimal("200000")}, "100000", "order value below minimum 200000"),
    ],
)
def test_not_applicable(overrides, order_value, reason):
    voucher = _voucher(**overrides)
    with pytest.raises(VoucherNotApplicableException) as exc:
        voucher.ensure_applicable(Decimal(order_value), now=NOW)
    assert exc.value.details["reason"] == reason


@pytest.mark.asyncio
async def test_create_and_quote(uow_factory, store):
    service = VoucherApplicationService(uow_factory, clock=lambda: NOW)
    created = await service.create_voucher(VoucherCreate(
        code="freeship",
        name="Free shipping",
        type=VoucherType.FIXED,
        value=Decimal("30000"),
        quantity=100,
        start_at=NOW - timedelta(days=1),
        end_at=NOW + timedelta(days=30),
    ))
    assert created.code == "FREESHIP"
    assert created.remaining == 100

    quote = await service.quote(VoucherQuoteRequest(code="freeship", order_value=Decimal("250000")))
    assert quote.discount == Decimal("30000")
    assert quote.total == Decimal("220000")
    # quoting never consumes a use
    assert store.vouchers["FREESHIP"].used_count == 0


@pytest.mark.asyncio
async def test_duplicate_code_rejected(uow_factory):
    service = VoucherApplicationService(uow_factory, clock=lambda: NOW)
    payload = VoucherCreate(
        code="SALE10", name="Sale", type=VoucherType.PERCENTAGE, value=Decimal("10"),
        quantity=1, start_at=NOW, end_at=NOW + timedelta(days=1),
    )
    await service.create_voucher(payload)
    with pytest.raises(VoucherAlreadyExistsException):
        await service.create_voucher(payload)


@pytest.mark.asyncio
async def test_unknown_voucher(uow_factory):
    service = VoucherApplicationService(uow_factory)
    with pytest.raises(VoucherNotFoundException):
        await service.get_voucher("NOPE")
