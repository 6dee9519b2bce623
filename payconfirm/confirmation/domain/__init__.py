"""Domain types: enums, value objects and events."""

__all__ = [
    "PaymentStatus",
    "SourceChannel",
    "MatchDecision",
    "IngestionOutcome",
    "PendingPayment",
    "ParsedCandidate",
    "MatchResult",
    "ConfirmationRecord",
    "PaymentConfirmedEvent",
    "ManualReviewRequestedEvent",
    "PaymentExpiredEvent",
    "to_amount",
    "amounts_match",
]

from .enums import IngestionOutcome, MatchDecision, PaymentStatus, SourceChannel
from .events import ManualReviewRequestedEvent, PaymentConfirmedEvent, PaymentExpiredEvent
from .models import (
    ConfirmationRecord,
    MatchResult,
    ParsedCandidate,
    PendingPayment,
    amounts_match,
    to_amount,
)
