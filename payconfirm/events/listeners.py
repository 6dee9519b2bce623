"""Default event listeners."""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal

from payconfirm.utils.logging import get_logger

from .base import BaseEvent, SubscriptionBus, Unsubscribe

logger = get_logger("event_listeners")


def audit_log_listener(event: BaseEvent) -> None:
    """Write every event to the structured audit log.

    Args:
        event: The event to log
    """
    event_data = asdict(event)

    # Convert non-serializable types
    event_data["event_id"] = str(event_data["event_id"])
    event_data["occurred_at"] = event_data["occurred_at"].isoformat()
    for key, value in event_data.items():
        if isinstance(value, Decimal):
            event_data[key] = str(value)

    logger.info(
        "domain_event",
        event_type=event.__class__.__name__,
        **event_data,
    )


def register_default_listeners(bus: SubscriptionBus) -> Unsubscribe:
    """Attach the audit listener at the lowest priority so UI handlers run first."""
    unsubscribe = bus.subscribe(audit_log_listener, BaseEvent, priority=-100)
    logger.debug("default_listeners_registered", listeners=["audit_log_listener"])
    return unsubscribe
