"""
Payment repository interface.
"""
from abc import ABC, abstractmethod
from typing import Optional, List
from decimal import Decimal

from .entity import Payment, PaymentStatus


class PaymentRepository(ABC):
    """Payment persistence port - what can be done, not how"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """Insert a payment row.

        Raises DuplicatePaymentException when the gateway transaction number
        is already recorded.
        """
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_txn_ref(self, txn_ref: str) -> Optional[Payment]:
        """Look up a gateway payment by the reference we minted at checkout."""
        pass

    @abstractmethod
    async def get_by_transaction_no(self, provider: str, transaction_no: str) -> Optional[Payment]:
        """Look up a gateway payment by the gateway's own transaction number."""
        pass

    @abstractmethod
    async def list_by_order(
        self,
        order_id: int,
        status: Optional[PaymentStatus] = None,
    ) -> List[Payment]:
        pass

    @abstractmethod
    async def sum_completed_by_order(self, order_id: int) -> Decimal:
        """Sum of amounts over COMPLETED payments for the order."""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """Write a status move; a stale version raises ConcurrentModificationException."""
        pass
