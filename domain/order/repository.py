"""
Order repository interface.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Order, OrderStatus


class OrderRepository(ABC):
    """Order persistence port"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Insert the order with its items and history."""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_by_customer(
        self,
        customer_id: str,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Persist status, payment status, dates and new history entries.

        The write is conditional on ``order.version``; when another writer got
        there first ConcurrentModificationException is raised and nothing is
        written. On success ``order.version`` is incremented.
        """
        pass
