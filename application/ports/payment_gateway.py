"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackVerification,
    GatewayTransactionDTO,
    PaymentRequest,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Redirect-style payment gateway.

    ``build_payment_url`` and ``verify_callback`` are pure; only
    ``query_transaction`` performs IO.
    """

    provider: str

    def build_payment_url(self, req: PaymentRequest) -> str: ...

    def verify_callback(self, raw: Mapping[str, str]) -> CallbackVerification: ...

    async def query_transaction(
        self,
        txn_ref: str,
        transaction_date: datetime,
        *,
        client_ip: Optional[str] = None,
        order_info: Optional[str] = None,
    ) -> GatewayTransactionDTO: ...
