"""
Hand-off point for drained domain events.
"""
from dataclasses import asdict
from typing import Iterable

from core.logging_config import get_logger


logger = get_logger("domain.events")


def publish(events: Iterable) -> None:
    """Log every event; there is no broker behind this yet."""
    for event in events:
        payload = asdict(event)
        payload.pop("occurred_at", None)
        logger.info("domain_event", event_type=type(event).__name__, **payload)
