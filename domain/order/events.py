"""
Order domain events.

Dataclass events record order lifecycle facts for downstream handling
(notifications, projections). The domain stays free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: Optional[int]
    order_code: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderPlaced(OrderEvent):
    total: str = ""
    voucher_code: Optional[str] = None


@dataclass
class OrderStatusChanged(OrderEvent):
    from_status: str = ""
    to_status: str = ""
    actor: Optional[str] = None


@dataclass
class OrderPaymentStatusChanged(OrderEvent):
    from_status: str = ""
    to_status: str = ""
