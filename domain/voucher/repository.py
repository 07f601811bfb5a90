"""
Voucher repository interface.
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Voucher


class VoucherRepository(ABC):

    @abstractmethod
    async def create(self, voucher: Voucher) -> Voucher:
        pass

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Voucher]:
        pass

    @abstractmethod
    async def increment_usage(self, code: str) -> bool:
        """Atomically consume one use; False when nothing is left."""
        pass
