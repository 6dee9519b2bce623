"""Ingestion adapters: the only place platform text enters the engine.

An adapter receives a *sink* (the engine's ``deliver_event``) when it is
started and pushes raw texts into it. Reading OS notifications or an SMS
inbox is platform code; it plugs in either as its own ``IngestionAdapter``
or as the ``fetch`` callable of a ``PollingInboxAdapter``.

Two reference adapters ship with the package:

- ``SimulatedPaymentAdapter``: development injector producing realistic
  Google Pay / PhonePe / Paytm / BHIM / bank texts
- ``PollingInboxAdapter``: polls a message source every few seconds with a
  look-back window (the SMS inbox model)
"""

from __future__ import annotations

import hashlib
import random
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Protocol

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from ..exceptions import IngestionError
from ..utils.logging import get_logger
from .domain.enums import SourceChannel
from .registry import Clock, utc_now

logger = get_logger(__name__)


class EventSink(Protocol):
    """Signature of ``ConfirmationEngine.deliver_event``."""

    def __call__(
        self,
        raw_text: str,
        source_channel: SourceChannel | str,
        observed_at: datetime | None = None,
        *,
        event_key: str | None = None,
        sender: str | None = None,
    ) -> Any: ...


class IngestionAdapter(ABC):
    """Base class for text sources."""

    name: str = "adapter"

    @abstractmethod
    def start(self, sink: EventSink) -> None:
        """Begin delivering texts to ``sink``."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering. Must be safe to call when not started."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"


# =============================================================================
# Simulated adapter
# =============================================================================

# app key -> (notification title, body template)
NOTIFICATION_TEMPLATES: dict[str, tuple[str, str]] = {
    "gpay": (
        "Google Pay",
        "You received ₹{amount} from {sender}. UPI transaction ID: {ref}",
    ),
    "phonepe": (
        "PhonePe",
        "Payment received! ₹{amount} credited from {sender}. Ref: {ref}",
    ),
    "paytm": (
        "Paytm",
        "Money received: ₹{amount} from {sender}. Transaction successful. ID: {ref}",
    ),
    "bhim": (
        "BHIM UPI",
        "UPI Credit: Rs.{amount} received from {sender}. Txn ID: {ref}",
    ),
    "generic": (
        "UPI App",
        "UPI transaction successful. Amount: ₹{amount}. Reference: {ref}",
    ),
}

# sender -> SMS body template
SMS_TEMPLATES: dict[str, str] = {
    "GPay": (
        "You received ₹{amount} from a payment. UPI Ref: {ref}. "
        "Download Google Pay to send money back instantly."
    ),
    "PhonePe": (
        "Money received! ₹{amount} credited to your account. UPI Ref: {ref}. "
        "Thank you for using PhonePe."
    ),
    "Paytm": (
        "₹{amount} received in your Paytm Wallet from UPI. Transaction ID: {ref}. "
        "Keep transacting with Paytm."
    ),
    "Bank": (
        "Your account has been credited with ₹{amount}. UPI Ref No: {ref}. "
        "Available balance updated."
    ),
    "BHIM": "₹{amount} received via BHIM UPI. Reference: {ref}. Transaction successful.",
}

BANK_SMS_TEMPLATE = (
    "{bank}: Your account has been credited with Rs.{amount} via UPI. "
    "Transaction ID: {ref}. Available balance: Rs.10,000.00"
)


def generate_upi_reference() -> str:
    """Random 12-digit UPI reference number."""
    return "".join(random.choices("0123456789", k=12))


def _format_amount(amount: Decimal | int | float | str) -> str:
    return f"{Decimal(str(amount)):.2f}"


class SimulatedPaymentAdapter(IngestionAdapter):
    """Inject realistic payment texts for development and demos.

    Example:
        >>> simulator = SimulatedPaymentAdapter()
        >>> engine.register_adapter(simulator)
        >>> engine.start()
        >>> simulator.simulate_notification("250.00", app="phonepe")
    """

    name = "simulator"

    def __init__(self) -> None:
        self._sink: EventSink | None = None

    @property
    def started(self) -> bool:
        return self._sink is not None

    def start(self, sink: EventSink) -> None:
        self._sink = sink
        logger.info("simulator_started")

    def stop(self) -> None:
        self._sink = None

    def simulate_notification(
        self,
        amount: Decimal | int | float | str,
        app: str = "gpay",
        sender_name: str = "Test Customer",
        reference: str | None = None,
    ) -> Any:
        """Deliver an app notification (title and body) for ``amount``."""
        try:
            title, template = NOTIFICATION_TEMPLATES[app.lower()]
        except KeyError as e:
            raise IngestionError(
                f"Unknown app template: {app}", adapter=self.name, original_error=e
            ) from e

        ref = reference or generate_upi_reference()
        body = template.format(amount=_format_amount(amount), sender=sender_name, ref=ref)
        return self._deliver(
            f"{title}\n{body}",
            SourceChannel.NOTIFICATION,
            event_key=f"{app.lower()}_{ref}",
        )

    def simulate_sms(
        self,
        amount: Decimal | int | float | str,
        sender: str = "GPay",
        reference: str | None = None,
    ) -> Any:
        """Deliver an SMS from a payment app; unknown senders use the GPay template."""
        ref = reference or generate_upi_reference()
        template = SMS_TEMPLATES.get(sender, SMS_TEMPLATES["GPay"])
        body = template.format(amount=_format_amount(amount), ref=ref)
        return self._deliver(body, SourceChannel.SMS, event_key=f"sms_{ref}", sender=sender)

    def simulate_bank_sms(
        self,
        amount: Decimal | int | float | str,
        bank_name: str = "Test Bank",
        reference: str | None = None,
    ) -> Any:
        ref = reference or generate_upi_reference()
        body = BANK_SMS_TEMPLATE.format(bank=bank_name, amount=_format_amount(amount), ref=ref)
        return self._deliver(body, SourceChannel.SMS, event_key=f"sms_{ref}", sender=bank_name)

    def _deliver(
        self,
        raw_text: str,
        channel: SourceChannel,
        *,
        event_key: str,
        sender: str | None = None,
    ) -> Any:
        if self._sink is None:
            raise IngestionError("Simulator is not started", adapter=self.name)

        logger.debug("simulated_text_delivered", source_channel=channel.value, event_key=event_key)
        return self._sink(raw_text, channel, event_key=event_key, sender=sender)


# =============================================================================
# Polling adapter
# =============================================================================


@dataclass(frozen=True)
class InboxMessage:
    """One message returned by a polled source."""

    body: str
    received_at: datetime
    sender: str | None = None
    message_id: str | None = None

    @property
    def event_key(self) -> str:
        """Stable identity used for duplicate suppression across overlapping polls."""
        if self.message_id:
            return self.message_id
        digest = hashlib.sha1(self.body.encode("utf-8")).hexdigest()[:16]
        return f"{self.sender or ''}:{self.received_at.isoformat()}:{digest}"


Fetch = Callable[[datetime], Iterable[InboxMessage]]

DEFAULT_POLL_INTERVAL = timedelta(seconds=2)
DEFAULT_LOOKBACK = timedelta(minutes=3)


class PollingInboxAdapter(IngestionAdapter):
    """Poll a message source and deliver everything received since ``now - lookback``.

    Consecutive polls overlap because of the look-back window; the engine's
    duplicate suppression drops messages it has already seen (keyed by
    ``InboxMessage.event_key``).

    Args:
        fetch: Platform callable returning messages received since a moment
        channel: Channel the messages belong to
        interval: Time between polls
        lookback: How far back each poll reaches
        clock: Time source
    """

    def __init__(
        self,
        fetch: Fetch,
        channel: SourceChannel = SourceChannel.SMS,
        interval: timedelta = DEFAULT_POLL_INTERVAL,
        lookback: timedelta = DEFAULT_LOOKBACK,
        clock: Clock = utc_now,
        name: str = "inbox",
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        if lookback <= timedelta(0):
            raise ValueError(f"lookback must be positive, got {lookback}")

        self.fetch = fetch
        self.channel = channel
        self.interval = interval
        self.lookback = lookback
        self.name = name
        self._clock = clock
        self._sink: EventSink | None = None
        self._poll_lock = threading.Lock()

        self.scheduler: BackgroundScheduler | None = None
        self.last_poll_time: datetime | None = None
        self.poll_failures = 0
        self.message_failures = 0

    def start(self, sink: EventSink) -> None:
        if self.scheduler is not None:
            logger.warning("poller_already_running", adapter=self.name)
            return

        self._sink = sink
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            func=self.poll_once,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds()),
            id=f"inbox_poll_{self.name}",
            name=f"Poll {self.name}",
            replace_existing=True,
        )
        self.scheduler.start()

        logger.info(
            "poller_started",
            adapter=self.name,
            source_channel=self.channel.value,
            interval_seconds=self.interval.total_seconds(),
            lookback_seconds=self.lookback.total_seconds(),
        )

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=True)
            self.scheduler = None
            logger.info("poller_stopped", adapter=self.name)
        self._sink = None

    def poll_once(self) -> int:
        """Fetch and deliver one batch.

        A failing ``fetch`` is logged and counted; the next poll runs as usual.
        A message whose delivery raises is logged and counted on its own and
        the rest of the batch is still delivered.

        Returns:
            Number of messages delivered successfully
        """
        sink = self._sink
        if sink is None:
            raise IngestionError("Poller is not started", adapter=self.name)

        with self._poll_lock:
            now = self._clock()
            self.last_poll_time = now
            started = time.perf_counter()

            try:
                messages = list(self.fetch(now - self.lookback))
            except Exception as e:
                self.poll_failures += 1
                logger.error(
                    "inbox_poll_failed",
                    adapter=self.name,
                    error=str(e),
                    failures=self.poll_failures,
                    exc_info=True,
                )
                return 0

            delivered = 0
            for message in messages:
                try:
                    sink(
                        message.body,
                        self.channel,
                        message.received_at,
                        event_key=message.event_key,
                        sender=message.sender,
                    )
                except Exception as e:
                    self.message_failures += 1
                    logger.error(
                        "inbox_message_failed",
                        adapter=self.name,
                        event_key=message.event_key,
                        error=str(e),
                        exc_info=True,
                    )
                    continue
                delivered += 1

        logger.debug(
            "inbox_polled",
            adapter=self.name,
            messages=len(messages),
            delivered=delivered,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return delivered
