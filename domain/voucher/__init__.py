"""Voucher domain exports."""
from .entity import Voucher, VoucherStatus, VoucherType
from .repository import VoucherRepository

__all__ = ["Voucher", "VoucherStatus", "VoucherType", "VoucherRepository"]
