"""Matcher: pick the pending payment a parsed candidate most plausibly confirms.

Two hard filters run first:

- Amount: ``|candidate.amount - expected_amount| < 0.01`` (no partial or
  approximate payments)
- Recency: ``observed_at - created_at < match_window``. A message stamped
  before tracking began is only accepted within ``max_clock_skew``; its age
  then counts as zero.

Survivors are scored::

    match_confidence = 70 + time_bonus + (10 * content_confidence) // 100

    time_bonus: +20 if age < 2 min, +15 if < 5 min, +10 if < 10 min, else 0

The highest score wins; ties go to the oldest entry (then ``payment_id``).
"""

from __future__ import annotations

from datetime import timedelta

from ..utils.logging import get_logger
from .domain.enums import MatchDecision
from .domain.models import MatchResult, ParsedCandidate, PendingPayment, amounts_match
from .registry import PaymentRegistry

logger = get_logger(__name__)

BASE_MATCH_CONFIDENCE = 70

# (age below, bonus), checked in order
TIME_BONUSES: tuple[tuple[timedelta, int], ...] = (
    (timedelta(minutes=2), 20),
    (timedelta(minutes=5), 15),
    (timedelta(minutes=10), 10),
)

DEFAULT_MATCH_WINDOW = timedelta(minutes=10)
DEFAULT_MAX_CLOCK_SKEW = timedelta(seconds=5)

DEFAULT_AUTO_CONFIRM_THRESHOLD = 85
DEFAULT_MANUAL_REVIEW_THRESHOLD = 60


def time_bonus(age: timedelta) -> int:
    for limit, bonus in TIME_BONUSES:
        if age < limit:
            return bonus
    return 0


def score_match(age: timedelta, content_confidence: int) -> int:
    """Combine recency and text confidence into a 0-100 match confidence."""
    score = BASE_MATCH_CONFIDENCE + time_bonus(age) + (10 * content_confidence) // 100
    return max(0, min(100, score))


def classify(
    match: MatchResult | None,
    auto_threshold: int = DEFAULT_AUTO_CONFIRM_THRESHOLD,
    review_threshold: int = DEFAULT_MANUAL_REVIEW_THRESHOLD,
) -> MatchDecision:
    """Map a match to what the engine should do with it."""
    if match is None:
        return MatchDecision.IGNORE
    if match.match_confidence >= auto_threshold:
        return MatchDecision.AUTO_CONFIRM
    if match.match_confidence >= review_threshold:
        return MatchDecision.MANUAL_REVIEW
    return MatchDecision.IGNORE


class PaymentMatcher:
    """Match candidates against a registry snapshot.

    Args:
        registry: Source of pending payments
        match_window: Maximum age of a pending payment the candidate may confirm
        max_clock_skew: How far before ``created_at`` a message may be stamped
    """

    def __init__(
        self,
        registry: PaymentRegistry,
        match_window: timedelta = DEFAULT_MATCH_WINDOW,
        max_clock_skew: timedelta = DEFAULT_MAX_CLOCK_SKEW,
    ) -> None:
        if match_window <= timedelta(0):
            raise ValueError(f"match_window must be positive, got {match_window}")
        if max_clock_skew < timedelta(0):
            raise ValueError(f"max_clock_skew must not be negative, got {max_clock_skew}")

        self.registry = registry
        self.match_window = match_window
        self.max_clock_skew = max_clock_skew

    def match(self, candidate: ParsedCandidate) -> MatchResult | None:
        scored: list[tuple[int, PendingPayment]] = []

        for entry in self.registry.all_pending():
            if not amounts_match(candidate.amount, entry.expected_amount):
                continue

            age = self._age(candidate, entry)
            if age is None:
                continue

            scored.append((score_match(age, candidate.content_confidence), entry))

        if not scored:
            logger.debug(
                "no_match",
                amount=str(candidate.amount),
                source_channel=candidate.source_channel.value,
            )
            return None

        scored.sort(key=lambda s: (-s[0], s[1].created_at, s[1].payment_id))
        confidence, winner = scored[0]

        result = MatchResult(
            payment_id=winner.payment_id,
            candidate=candidate,
            match_confidence=confidence,
            pending=winner,
            competing_matches=len(scored) - 1,
        )

        if result.is_ambiguous:
            logger.warning(
                "ambiguous_match",
                payment_id=winner.payment_id,
                amount=str(candidate.amount),
                competing_matches=result.competing_matches,
            )
        return result

    def _age(self, candidate: ParsedCandidate, entry: PendingPayment) -> timedelta | None:
        """Age of ``entry`` when the candidate was observed; None if outside the window."""
        age = entry.age_at(candidate.observed_at)
        if age < timedelta(0):
            if -age > self.max_clock_skew:
                return None
            age = timedelta(0)
        if age >= self.match_window:
            return None
        return age
