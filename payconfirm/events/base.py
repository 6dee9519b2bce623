"""Base event infrastructure.

Provides the immutable event base class and the in-process subscription bus
that fans confirmation and review events out to UI consumers.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from payconfirm.utils.logging import get_logger

logger = get_logger("events")

Handler = Callable[["BaseEvent"], Any]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class BaseEvent:
    """Base class for all domain events.

    All events are immutable (frozen dataclass) and include standard metadata:
    - event_id: Unique identifier for this event instance
    - occurred_at: Timestamp when the event occurred (UTC)
    - context: Optional additional context data
    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC), init=False)
    context: dict[str, Any] | None = field(default=None, kw_only=True)


@dataclass
class _HandlerRegistration:
    """Internal registration data for event handlers."""

    handler: Handler
    event_type: type[BaseEvent]
    priority: int
    sequence: int


class SubscriptionBus:
    """Synchronous in-memory event bus.

    Features:
    - Unsubscribe handle returned from ``subscribe``
    - Priority-based handler execution (higher priority = executed first)
    - Event type filtering with inheritance (``BaseEvent`` receives everything)
    - Error isolation (one handler failure doesn't affect others)

    Example:
        >>> bus = SubscriptionBus()
        >>> unsubscribe = bus.subscribe(on_confirmed, PaymentConfirmedEvent)
        >>> bus.publish(PaymentConfirmedEvent(...))
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._registrations: list[_HandlerRegistration] = []
        self._event_count: dict[str, int] = defaultdict(int)
        self._failure_count = 0
        self._sequence = 0
        self._lock = threading.Lock()

    def subscribe(
        self,
        handler: Handler,
        event_type: type[BaseEvent] = BaseEvent,
        priority: int = 0,
    ) -> Unsubscribe:
        """Register a handler and return a callable that removes it.

        Args:
            handler: Callable invoked with each matching event
            event_type: Event class to listen for (subclasses included)
            priority: Handler priority (higher = executed first). Default: 0

        Returns:
            Idempotent unsubscribe callable
        """
        with self._lock:
            self._sequence += 1
            registration = _HandlerRegistration(
                handler=handler,
                event_type=event_type,
                priority=priority,
                sequence=self._sequence,
            )
            self._registrations.append(registration)
            # Stable: equal priorities keep subscription order
            self._registrations.sort(key=lambda r: (-r.priority, r.sequence))

        logger.debug(
            "handler_registered",
            event_type=event_type.__name__,
            handler=_handler_name(handler),
            priority=priority,
        )

        def unsubscribe() -> None:
            with self._lock:
                if registration in self._registrations:
                    self._registrations.remove(registration)
                    logger.debug(
                        "handler_unregistered",
                        event_type=event_type.__name__,
                        handler=_handler_name(handler),
                    )

        return unsubscribe

    def publish(self, event: BaseEvent) -> int:
        """Publish an event synchronously to all matching handlers.

        Handlers subscribed or removed while the event is being delivered do
        not affect this delivery.

        Returns:
            Number of handlers that completed without raising
        """
        event_name = type(event).__name__

        with self._lock:
            self._event_count[event_name] += 1
            handlers = [r for r in self._registrations if isinstance(event, r.event_type)]

        logger.info(
            "event_published",
            event_type=event_name,
            event_id=str(event.event_id),
            handlers=len(handlers),
        )

        delivered = 0
        for registration in handlers:
            try:
                registration.handler(event)
                delivered += 1
            except Exception as e:
                # Isolate handler failures - log but don't propagate
                with self._lock:
                    self._failure_count += 1
                logger.error(
                    "handler_failed",
                    event_type=event_name,
                    handler=_handler_name(registration.handler),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._registrations)

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics."""
        with self._lock:
            return {
                "total_handlers": len(self._registrations),
                "events_published": dict(self._event_count),
                "total_events": sum(self._event_count.values()),
                "handler_failures": self._failure_count,
            }


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or type(handler).__name__
