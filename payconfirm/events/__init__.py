"""In-process event system.

Confirmation, review and expiry events are published on a
``SubscriptionBus``; UI layers subscribe with a callback and receive an
unsubscribe handle.

Example:
    >>> from payconfirm.events import SubscriptionBus
    >>> bus = SubscriptionBus()
    >>> unsubscribe = bus.subscribe(print)
    >>> unsubscribe()
"""

from __future__ import annotations

__all__ = [
    "BaseEvent",
    "SubscriptionBus",
    "Unsubscribe",
    "audit_log_listener",
    "register_default_listeners",
]

from .base import BaseEvent, SubscriptionBus, Unsubscribe
from .listeners import audit_log_listener, register_default_listeners
