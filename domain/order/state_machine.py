"""
Order status transition table.

Every accepted transition sets exactly one date field and appends exactly one
history entry; anything not listed in ALLOWED_TRANSITIONS is rejected.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from domain.common.exceptions import InvalidTransitionException
from .entity import Order, OrderHistoryEntry, OrderPaymentStatus, OrderStatus


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CHO_XAC_NHAN: frozenset({OrderStatus.CHO_GIAO_HANG, OrderStatus.DA_HUY}),
    OrderStatus.CHO_GIAO_HANG: frozenset({OrderStatus.DANG_VAN_CHUYEN, OrderStatus.DA_HUY}),
    OrderStatus.DANG_VAN_CHUYEN: frozenset({OrderStatus.DA_GIAO_HANG}),
    OrderStatus.DA_GIAO_HANG: frozenset({OrderStatus.HOAN_THANH}),
    OrderStatus.HOAN_THANH: frozenset(),
    OrderStatus.DA_HUY: frozenset(),
}

DATE_FIELD_BY_STATUS: dict[OrderStatus, str] = {
    OrderStatus.CHO_GIAO_HANG: "confirmed_at",
    OrderStatus.DANG_VAN_CHUYEN: "shipped_at",
    OrderStatus.DA_GIAO_HANG: "delivered_at",
    OrderStatus.HOAN_THANH: "completed_at",
    OrderStatus.DA_HUY: "cancelled_at",
}

# target -> (predicate, reason shown when it fails)
_GUARDS: dict[OrderStatus, tuple[Callable[[Order], bool], str]] = {
    OrderStatus.HOAN_THANH: (
        lambda order: order.payment_status == OrderPaymentStatus.PAID,
        "order is not fully paid",
    ),
}


def allowed_next(status: OrderStatus) -> frozenset[OrderStatus]:
    return ALLOWED_TRANSITIONS[status]


def is_terminal(status: OrderStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(order: Order, target: OrderStatus) -> bool:
    if target not in ALLOWED_TRANSITIONS[order.status]:
        return False
    guard = _GUARDS.get(target)
    return guard is None or guard[0](order)


def transition(
    order: Order,
    new_status: OrderStatus,
    note: Optional[str] = None,
    actor: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> OrderHistoryEntry:
    """Move ``order`` to ``new_status`` or raise InvalidTransitionException.

    The order is left untouched when the move is rejected.
    """
    new_status = OrderStatus(new_status)
    if new_status not in ALLOWED_TRANSITIONS[order.status]:
        raise InvalidTransitionException(order.status.value, new_status.value)
    guard = _GUARDS.get(new_status)
    if guard is not None and not guard[0](order):
        raise InvalidTransitionException(order.status.value, new_status.value, reason=guard[1])

    now = now or datetime.now(timezone.utc)
    entry = OrderHistoryEntry(status=new_status, note=note, actor=actor, created_at=now)
    order.status = new_status
    setattr(order, DATE_FIELD_BY_STATUS[new_status], now)
    order.history.append(entry)
    order.updated_at = now
    return entry
