"""Confirmation engine facade.

Wires parser, registry, matcher, dispatcher, sweeper, store and bus into one
explicitly constructed object. There is no module-level singleton: create an
engine and pass it to whoever needs it.

Pipeline for one delivered text::

    deliver_event -> dedupe -> parse -> match (per-channel window)
                  -> classify -> confirm / request review / ignore

Example:
    >>> engine = ConfirmationEngine(store=InMemoryConfirmationStore())
    >>> engine.subscribe(on_confirmed, PaymentConfirmedEvent)
    >>> engine.track_payment("order-42", "250.00", "shop@okaxis")
    >>> engine.deliver_event("You have received Rs. 250.00 via UPI.", "notification")
    <IngestionOutcome.CONFIRMED: 'confirmed'>
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from ..events.base import BaseEvent, Handler, SubscriptionBus, Unsubscribe
from ..events.listeners import register_default_listeners
from ..exceptions import ConfigurationError, ValidationError
from ..utils.config import Settings, get_settings
from ..utils.logging import (
    clear_correlation_id,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from . import metrics
from .dispatcher import ConfirmationDispatcher
from .domain.enums import IngestionOutcome, MatchDecision, SourceChannel
from .domain.models import ConfirmationRecord, PendingPayment
from .ingestion import IngestionAdapter
from .matcher import PaymentMatcher, classify
from .parser import PaymentTextParser
from .patterns import DEFAULT_PATTERNS, PatternTable
from .registry import Clock, PaymentRegistry, utc_now
from .storage import ConfirmationStore, JsonFileConfirmationStore
from .sweeper import CleanupSweeper

logger = get_logger(__name__)


class ConfirmationEngine:
    """Automatic payment confirmation from notification and SMS text.

    Args:
        settings: Engine settings (default: process settings from the environment)
        store: Confirmation audit log (default: JSON file at
            ``settings.confirmation_log_path``)
        bus: Subscription bus (default: a new one)
        notification_patterns: Pattern table for notifications
        sms_patterns: Pattern table for SMS
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ConfirmationStore | None = None,
        bus: SubscriptionBus | None = None,
        notification_patterns: PatternTable = DEFAULT_PATTERNS,
        sms_patterns: PatternTable = DEFAULT_PATTERNS,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or get_settings()
        _check_settings(self.settings)
        self.clock = clock
        self.bus = bus or SubscriptionBus()
        self.store = store or JsonFileConfirmationStore(
            self.settings.confirmation_log_path, cap=self.settings.history_cap
        )
        self.registry = PaymentRegistry(clock=clock)

        self.parsers: dict[SourceChannel, PaymentTextParser] = {
            SourceChannel.NOTIFICATION: PaymentTextParser(notification_patterns),
            SourceChannel.SMS: PaymentTextParser(sms_patterns),
        }
        self.matchers: dict[SourceChannel, PaymentMatcher] = {
            SourceChannel.NOTIFICATION: PaymentMatcher(
                self.registry,
                match_window=self.settings.notification_match_window,
                max_clock_skew=self.settings.max_clock_skew,
            ),
            SourceChannel.SMS: PaymentMatcher(
                self.registry,
                match_window=self.settings.sms_match_window,
                max_clock_skew=self.settings.max_clock_skew,
            ),
        }

        self.dispatcher = ConfirmationDispatcher(self.registry, self.store, self.bus, clock)
        self.sweeper = CleanupSweeper(
            self.registry,
            self.bus,
            stale_after=self.settings.stale_after,
            interval=self.settings.sweep_interval,
            clock=clock,
        )

        self.adapters: list[IngestionAdapter] = []
        self.running = False

        self._seen_keys: deque[str] = deque()
        self._seen_lookup: set[str] = set()
        self._dedupe_lock = threading.Lock()

        self._audit_unsubscribe: Unsubscribe | None = None
        if self.settings.audit_log_events:
            self._audit_unsubscribe = register_default_listeners(self.bus)

        logger.info(
            "engine_initialized",
            notification_window=self.settings.notification_match_window_seconds,
            sms_window=self.settings.sms_match_window_seconds,
            auto_confirm_threshold=self.settings.auto_confirm_threshold,
            manual_review_threshold=self.settings.manual_review_threshold,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def deliver_event(
        self,
        raw_text: str,
        source_channel: SourceChannel | str,
        observed_at: datetime | None = None,
        *,
        event_key: str | None = None,
        sender: str | None = None,
    ) -> IngestionOutcome:
        """Run one raw text through the confirmation pipeline.

        Args:
            raw_text: Notification title and body, or SMS body
            source_channel: ``notification`` or ``sms``
            observed_at: When the text was received (default: now). Naive
                datetimes are taken as local time, as ``datetime.fromtimestamp``
                produces them
            event_key: Source-assigned id (notification id, SMS id); repeats are dropped
            sender: SMS sender, used as payer name when the text carries none

        Raises:
            ValidationError: If ``source_channel`` is unknown
        """
        try:
            channel = SourceChannel(source_channel)
        except ValueError as e:
            raise ValidationError(
                "Unknown source channel",
                field="source_channel",
                value=source_channel,
                original_error=e,
            ) from e

        if observed_at is not None:
            observed_at = _as_utc(observed_at)

        previous_correlation_id = get_correlation_id()
        set_correlation_id(event_key)
        try:
            with metrics.track_processing_duration(channel.value):
                outcome = self._process(raw_text, channel, observed_at, event_key, sender)
        finally:
            if previous_correlation_id:
                set_correlation_id(previous_correlation_id)
            else:
                clear_correlation_id()

        metrics.record_ingested_event(channel.value, outcome.value)
        return outcome

    async def deliver_event_async(
        self,
        raw_text: str,
        source_channel: SourceChannel | str,
        observed_at: datetime | None = None,
        *,
        event_key: str | None = None,
        sender: str | None = None,
    ) -> IngestionOutcome:
        """``deliver_event`` for asyncio adapters; runs in a worker thread."""
        return await asyncio.to_thread(
            self.deliver_event,
            raw_text,
            source_channel,
            observed_at,
            event_key=event_key,
            sender=sender,
        )

    def _process(
        self,
        raw_text: str,
        channel: SourceChannel,
        observed_at: datetime | None,
        event_key: str | None,
        sender: str | None,
    ) -> IngestionOutcome:
        if event_key is not None and not self._remember(event_key):
            logger.debug("duplicate_event_dropped", event_key=event_key)
            return IngestionOutcome.DUPLICATE

        try:
            return self._evaluate(raw_text, channel, observed_at, sender)
        except Exception:
            # Failed events stay retryable; only processed keys count as seen
            if event_key is not None:
                self._forget(event_key)
            raise

    def _evaluate(
        self,
        raw_text: str,
        channel: SourceChannel,
        observed_at: datetime | None,
        sender: str | None,
    ) -> IngestionOutcome:
        candidate = self.parsers[channel].parse(raw_text, channel, observed_at or self.clock())
        if candidate is None:
            return IngestionOutcome.NO_CANDIDATE

        if channel is SourceChannel.SMS and sender and candidate.counterparty_label is None:
            candidate = candidate.with_counterparty(sender)

        match = self.matchers[channel].match(candidate)
        if match is None:
            return IngestionOutcome.NO_MATCH

        metrics.record_match_confidence(channel.value, match.match_confidence)
        decision = classify(
            match,
            auto_threshold=self.settings.auto_confirm_threshold,
            review_threshold=self.settings.manual_review_threshold,
        )

        if decision is MatchDecision.AUTO_CONFIRM:
            record = self.dispatcher.confirm_automatic(match)
            metrics.update_pending_count(self.registry.count())
            if record is None:
                return IngestionOutcome.ALREADY_RESOLVED
            return IngestionOutcome.CONFIRMED

        if decision is MatchDecision.MANUAL_REVIEW:
            if self.dispatcher.request_manual_review(match):
                return IngestionOutcome.REVIEW_REQUESTED
            return IngestionOutcome.ALREADY_RESOLVED

        logger.info(
            "match_ignored",
            payment_id=match.payment_id,
            match_confidence=match.match_confidence,
        )
        return IngestionOutcome.IGNORED

    def _remember(self, event_key: str) -> bool:
        """Record ``event_key``; False if it was already seen."""
        with self._dedupe_lock:
            if event_key in self._seen_lookup:
                return False
            self._seen_keys.append(event_key)
            self._seen_lookup.add(event_key)
            while len(self._seen_keys) > self.settings.dedupe_window:
                self._seen_lookup.discard(self._seen_keys.popleft())
            return True

    def _forget(self, event_key: str) -> None:
        with self._dedupe_lock:
            if event_key in self._seen_lookup:
                self._seen_lookup.discard(event_key)
                self._seen_keys.remove(event_key)

    def register_adapter(self, adapter: IngestionAdapter) -> None:
        """Attach an ingestion adapter; it is started with the engine."""
        self.adapters.append(adapter)
        logger.info("adapter_registered", adapter=adapter.name)
        if self.running:
            adapter.start(self.deliver_event)

    # ------------------------------------------------------------------
    # Pending payments
    # ------------------------------------------------------------------

    def track_payment(
        self,
        payment_id: str,
        expected_amount: Decimal | int | float | str,
        payee_identifier: str,
        customer_label: str | None = None,
    ) -> PendingPayment:
        """Start waiting for a payment (replaces an entry with the same id)."""
        entry = self.registry.track(payment_id, expected_amount, payee_identifier, customer_label)
        metrics.update_pending_count(self.registry.count())
        return entry

    def untrack_payment(self, payment_id: str) -> PendingPayment | None:
        entry = self.registry.untrack(payment_id)
        metrics.update_pending_count(self.registry.count())
        return entry

    def manual_confirm(self, payment_id: str, amount: Decimal | int | float | str) -> bool:
        """Confirm a payment on the merchant's word. See ``ConfirmationDispatcher.confirm_manual``."""
        confirmed = self.dispatcher.confirm_manual(payment_id, amount)
        metrics.update_pending_count(self.registry.count())
        return confirmed

    def pending_payments(self) -> list[PendingPayment]:
        return self.registry.all_pending()

    def active_payments_count(self) -> int:
        return self.registry.count()

    def payment_history(self, limit: int | None = None) -> list[ConfirmationRecord]:
        """Most recent confirmation records first."""
        return self.store.read_recent_confirmations(limit)

    def sweep(self, now: datetime | None = None) -> list[PendingPayment]:
        return self.sweeper.sweep(now)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        handler: Handler,
        event_type: type[BaseEvent] = BaseEvent,
        priority: int = 0,
    ) -> Unsubscribe:
        return self.bus.subscribe(handler, event_type, priority)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the sweeper, the metrics exporter (if enabled) and all adapters."""
        if self.running:
            logger.warning("engine_already_running")
            return

        metrics.start_metrics_server(settings=self.settings)
        self.sweeper.start()
        for adapter in self.adapters:
            adapter.start(self.deliver_event)
        self.running = True

        logger.info("engine_started", adapters=[a.name for a in self.adapters])

    def stop(self) -> None:
        if not self.running:
            return

        for adapter in self.adapters:
            try:
                adapter.stop()
            except Exception as e:
                logger.error("adapter_stop_failed", adapter=adapter.name, error=str(e), exc_info=True)
        self.sweeper.stop()
        self.running = False

        logger.info("engine_stopped")

    def __enter__(self) -> ConfirmationEngine:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def get_status(self) -> dict[str, Any]:
        """Snapshot of engine state for diagnostics."""
        last_sweep = self.sweeper.last_sweep_time
        return {
            "running": self.running,
            "pending_payments": self.registry.count(),
            "adapters": [a.name for a in self.adapters],
            "sweeper_running": self.sweeper.running,
            "last_sweep_time": last_sweep.isoformat() if last_sweep else None,
            "remembered_event_keys": len(self._seen_keys),
            "match_windows": {
                SourceChannel.NOTIFICATION.value: self.settings.notification_match_window_seconds,
                SourceChannel.SMS.value: self.settings.sms_match_window_seconds,
            },
            "bus": self.bus.get_stats(),
        }


def _as_utc(moment: datetime) -> datetime:
    """Aware datetimes convert to UTC; naive ones are read as local time."""
    return moment.astimezone(UTC)


def _check_settings(settings: Settings) -> None:
    """Re-check cross-field constraints that copied or constructed settings skip."""
    if settings.manual_review_threshold > settings.auto_confirm_threshold:
        raise ConfigurationError(
            "manual_review_threshold exceeds auto_confirm_threshold",
            setting="manual_review_threshold",
            expected=f"<= {settings.auto_confirm_threshold}",
        )
    longest_window = max(
        settings.notification_match_window_seconds, settings.sms_match_window_seconds
    )
    if settings.stale_after_seconds < longest_window:
        raise ConfigurationError(
            "stale_after_seconds is shorter than the longest match window",
            setting="stale_after_seconds",
            expected=f">= {longest_window}",
        )
