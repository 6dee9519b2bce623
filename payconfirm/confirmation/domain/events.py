"""Domain events published by the confirmation engine.

All events are immutable (frozen dataclasses) and flat, so the audit listener
can log them field by field.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ...events.base import BaseEvent


@dataclass(frozen=True)
class PaymentConfirmedEvent(BaseEvent):
    """Fired when a pending payment is confirmed, automatically or manually."""

    payment_id: str
    amount: Decimal
    match_confidence: int
    auto_confirmed: bool
    manual: bool = False
    reference: str | None = None
    counterparty_label: str | None = None
    source_app: str | None = None
    source_channel: str | None = None
    customer_label: str | None = None
    ambiguous: bool = False


@dataclass(frozen=True)
class ManualReviewRequestedEvent(BaseEvent):
    """Fired when a match is plausible but below the auto-confirm threshold.

    The payment stays tracked; the UI asks the merchant to confirm it.
    """

    payment_id: str
    amount: Decimal
    expected_amount: Decimal
    match_confidence: int
    requires_manual_confirmation: bool = True
    reference: str | None = None
    counterparty_label: str | None = None
    source_app: str | None = None
    source_channel: str | None = None
    ambiguous: bool = False


@dataclass(frozen=True)
class PaymentExpiredEvent(BaseEvent):
    """Fired when the sweeper evicts a pending payment nobody confirmed."""

    payment_id: str
    expected_amount: Decimal
    created_at: datetime
    age_seconds: int
