"""Domain enums for payment confirmation."""

from enum import Enum


class PaymentStatus(str, Enum):
    """Pending payment status.

    Lifecycle:
        PENDING → CONFIRMED (automatic or manual confirmation)
        PENDING → EXPIRED (evicted by the sweeper)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


class SourceChannel(str, Enum):
    """Where a piece of payment text came from."""

    NOTIFICATION = "notification"
    SMS = "sms"

    def __str__(self) -> str:
        return self.value


class MatchDecision(str, Enum):
    """What the engine does with a match, by confidence band."""

    AUTO_CONFIRM = "auto_confirm"  # >= auto threshold
    MANUAL_REVIEW = "manual_review"  # between review and auto thresholds
    IGNORE = "ignore"  # below review threshold, or no match

    def __str__(self) -> str:
        return self.value


class IngestionOutcome(str, Enum):
    """Result of delivering one raw text event to the engine."""

    DUPLICATE = "duplicate"  # event key already processed
    NO_CANDIDATE = "no_candidate"  # text carries no payment signal
    NO_MATCH = "no_match"  # parsed, but nothing pending fits
    IGNORED = "ignored"  # matched below the review threshold
    REVIEW_REQUESTED = "review_requested"
    CONFIRMED = "confirmed"
    ALREADY_RESOLVED = "already_resolved"  # entry vanished before dispatch

    def __str__(self) -> str:
        return self.value
