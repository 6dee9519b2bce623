"""Registry of payments the checkout flow is currently waiting for."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

from ..exceptions import ValidationError
from ..utils.logging import get_logger
from .domain.enums import PaymentStatus
from .domain.models import PendingPayment, to_amount

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class PaymentRegistry:
    """Thread-safe map of ``payment_id`` to ``PendingPayment``.

    Entries are immutable; every mutation swaps the whole entry under the
    lock, so readers holding a snapshot are never affected.

    Example:
        >>> registry = PaymentRegistry()
        >>> registry.track("order-1", "250.00", "Shop@okaxis")
        >>> len(registry)
        1
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, PendingPayment] = {}
        self._lock = threading.RLock()

    def track(
        self,
        payment_id: str,
        expected_amount: Decimal | int | float | str,
        payee_identifier: str,
        customer_label: str | None = None,
    ) -> PendingPayment:
        """Start (or restart) waiting for a payment.

        Tracking an id that is already present replaces the entry and resets
        its ``created_at``.

        Raises:
            ValidationError: If the id is empty or the amount is not positive
        """
        if not isinstance(payment_id, str) or not payment_id.strip():
            raise ValidationError(
                "payment_id must be a non-empty string", field="payment_id", value=payment_id
            )
        amount = to_amount(expected_amount, field="expected_amount")
        payee = (payee_identifier or "").strip().lower()

        entry = PendingPayment(
            payment_id=payment_id,
            expected_amount=amount,
            payee_identifier=payee,
            created_at=self._clock(),
            customer_label=customer_label,
        )

        with self._lock:
            replaced = payment_id in self._entries
            self._entries[payment_id] = entry
            pending = len(self._entries)

        logger.info(
            "payment_tracked",
            payment_id=payment_id,
            expected_amount=str(amount),
            replaced=replaced,
            pending=pending,
        )
        return entry

    def untrack(self, payment_id: str) -> PendingPayment | None:
        """Stop waiting for a payment. No-op if it is not tracked."""
        removed = self.pop(payment_id)
        if removed is not None:
            logger.info("payment_untracked", payment_id=payment_id)
        return removed

    def pop(self, payment_id: str) -> PendingPayment | None:
        """Atomically remove and return an entry; ``None`` if already gone."""
        with self._lock:
            return self._entries.pop(payment_id, None)

    def pop_if(self, payment_id: str, expected: PendingPayment) -> PendingPayment | None:
        """Remove ``payment_id`` only if it is still the very entry in ``expected``.

        A payment re-tracked under the same id after a match was scored is a
        different entry and is left alone.
        """
        with self._lock:
            if self._entries.get(payment_id) is not expected:
                return None
            return self._entries.pop(payment_id)

    def get(self, payment_id: str) -> PendingPayment | None:
        with self._lock:
            return self._entries.get(payment_id)

    def all_pending(self) -> list[PendingPayment]:
        """Snapshot of every tracked entry, oldest first."""
        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda e: e.created_at)

    def evict_older_than(self, cutoff: datetime) -> list[PendingPayment]:
        """Remove entries created strictly before ``cutoff``.

        Returns:
            The evicted entries, marked ``EXPIRED``
        """
        with self._lock:
            stale = [e for e in self._entries.values() if e.created_at < cutoff]
            for entry in stale:
                del self._entries[entry.payment_id]

        return [e.with_status(PaymentStatus.EXPIRED) for e in stale]

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, payment_id: object) -> bool:
        with self._lock:
            return payment_id in self._entries
