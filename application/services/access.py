"""
Ownership checks shared by the order and payment services.
"""
from application.dtos.auth import Principal
from core.exceptions import PermissionDeniedException
from domain.order.entity import Order


def ensure_can_access_order(order: Order, principal: Principal) -> None:
    """Staff see every order; customers only their own."""
    if principal.is_staff:
        return
    if order.customer_id is None or order.customer_id != principal.user_id:
        raise PermissionDeniedException()


def ensure_staff(principal: Principal) -> None:
    if not principal.is_staff:
        raise PermissionDeniedException(required_role="STAFF")
