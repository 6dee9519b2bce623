"""Confirmation dispatcher.

Turns a match (or a merchant's manual confirmation) into its side effects, in
this order:

1. Atomic compare-and-remove on the registry: if the entry is gone, or was
   re-tracked after the match was scored, nothing else happens
2. Append a ``ConfirmationRecord`` to the store (failures are logged, never
   retried, never raised)
3. Publish ``PaymentConfirmedEvent`` on the bus

Because removal comes first, two concurrent events for the same payment
produce at most one record and one published event.
"""

from __future__ import annotations

from decimal import Decimal

from ..events.base import SubscriptionBus
from ..exceptions import PersistenceError
from ..utils.logging import get_logger
from . import metrics
from .domain.enums import PaymentStatus
from .domain.events import ManualReviewRequestedEvent, PaymentConfirmedEvent
from .domain.models import ConfirmationRecord, MatchResult, PendingPayment, to_amount
from .registry import Clock, PaymentRegistry, utc_now
from .storage import ConfirmationStore

logger = get_logger(__name__)

MANUAL_CONFIDENCE = 100


class ConfirmationDispatcher:
    """Apply confirmation decisions to the registry, store and bus."""

    def __init__(
        self,
        registry: PaymentRegistry,
        store: ConfirmationStore,
        bus: SubscriptionBus,
        clock: Clock = utc_now,
    ) -> None:
        self.registry = registry
        self.store = store
        self.bus = bus
        self._clock = clock

    def confirm_automatic(self, match: MatchResult) -> ConfirmationRecord | None:
        """Confirm a high-confidence match.

        Returns:
            The persisted record, or None if the payment was already resolved
            or re-tracked since the match was scored
        """
        removed = self.registry.pop_if(match.payment_id, match.pending)
        if removed is None:
            logger.info("payment_already_resolved", payment_id=match.payment_id)
            return None
        entry = removed.with_status(PaymentStatus.CONFIRMED)

        candidate = match.candidate
        record = ConfirmationRecord(
            payment_id=entry.payment_id,
            amount=candidate.amount,
            confirmed_at=self._clock(),
            match_confidence=match.match_confidence,
            manual=False,
            reference=candidate.reference,
            counterparty_label=candidate.counterparty_label,
            source_app=candidate.source_app,
            source_channel=candidate.source_channel,
            customer_label=entry.customer_label,
        )
        self._persist(record)

        logger.info(
            "payment_auto_confirmed",
            payment_id=entry.payment_id,
            amount=str(candidate.amount),
            match_confidence=match.match_confidence,
            source_channel=candidate.source_channel.value,
            status=entry.status.value,
            ambiguous=match.is_ambiguous,
        )
        metrics.record_confirmation("automatic")

        self.bus.publish(
            PaymentConfirmedEvent(
                payment_id=entry.payment_id,
                amount=candidate.amount,
                match_confidence=match.match_confidence,
                auto_confirmed=True,
                manual=False,
                reference=candidate.reference,
                counterparty_label=candidate.counterparty_label,
                source_app=candidate.source_app,
                source_channel=candidate.source_channel.value,
                customer_label=entry.customer_label,
                ambiguous=match.is_ambiguous,
            )
        )
        return record

    def confirm_manual(self, payment_id: str, amount: Decimal | int | float | str) -> bool:
        """Confirm a payment on the merchant's word.

        Raises:
            ValidationError: If ``amount`` is not a positive number

        Returns:
            False if the payment is not (or no longer) tracked
        """
        confirmed_amount = to_amount(amount)

        removed = self.registry.pop(payment_id)
        if removed is None:
            logger.info("manual_confirm_unknown_payment", payment_id=payment_id)
            return False
        entry = removed.with_status(PaymentStatus.CONFIRMED)

        record = ConfirmationRecord(
            payment_id=entry.payment_id,
            amount=confirmed_amount,
            confirmed_at=self._clock(),
            match_confidence=MANUAL_CONFIDENCE,
            manual=True,
            customer_label=entry.customer_label,
        )
        self._persist(record)

        logger.info(
            "payment_manually_confirmed",
            payment_id=entry.payment_id,
            amount=str(confirmed_amount),
            expected_amount=str(entry.expected_amount),
            status=entry.status.value,
        )
        metrics.record_confirmation("manual")

        self.bus.publish(
            PaymentConfirmedEvent(
                payment_id=entry.payment_id,
                amount=confirmed_amount,
                match_confidence=MANUAL_CONFIDENCE,
                auto_confirmed=False,
                manual=True,
                customer_label=entry.customer_label,
            )
        )
        return True

    def request_manual_review(self, match: MatchResult) -> bool:
        """Ask the merchant to confirm a plausible match. The entry stays tracked.

        Returns:
            False if the payment is no longer tracked, or was re-tracked after
            the match was scored
        """
        entry: PendingPayment | None = self.registry.get(match.payment_id)
        if entry is None or entry is not match.pending or entry.status is not PaymentStatus.PENDING:
            logger.info("payment_already_resolved", payment_id=match.payment_id)
            return False

        candidate = match.candidate
        logger.info(
            "manual_review_requested",
            payment_id=entry.payment_id,
            amount=str(candidate.amount),
            match_confidence=match.match_confidence,
            ambiguous=match.is_ambiguous,
        )
        metrics.record_manual_review(candidate.source_channel.value)

        self.bus.publish(
            ManualReviewRequestedEvent(
                payment_id=entry.payment_id,
                amount=candidate.amount,
                expected_amount=entry.expected_amount,
                match_confidence=match.match_confidence,
                reference=candidate.reference,
                counterparty_label=candidate.counterparty_label,
                source_app=candidate.source_app,
                source_channel=candidate.source_channel.value,
                ambiguous=match.is_ambiguous,
            )
        )
        return True

    def _persist(self, record: ConfirmationRecord) -> None:
        try:
            self.store.append_confirmation(record)
        except PersistenceError as e:
            logger.error(
                "confirmation_persist_failed",
                payment_id=record.payment_id,
                error=str(e),
                context=e.context,
                exc_info=True,
            )
        except Exception as e:
            # Third-party stores may raise anything; the confirmation stands
            logger.error(
                "confirmation_persist_failed",
                payment_id=record.payment_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
