"""Content parser: turns notification/SMS text into a payment candidate.

The parser is pure and stateless. Each call runs four independent steps:

1. Keyword gate: cheap substring check, drops unrelated texts early
2. Amount extraction: ordered regex list, first match wins
3. Metadata extraction: reference, payer name and source app
4. Content confidence: additive heuristic score clamped to [0, 100]

``parse`` never raises; anything it cannot use yields ``None``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from ..utils.logging import get_logger
from .domain.enums import SourceChannel
from .domain.models import ParsedCandidate
from .patterns import (
    COUNTERPARTY_REJECT,
    COUNTERPARTY_STOPWORDS,
    DEFAULT_PATTERNS,
    PatternTable,
)

logger = get_logger(__name__)

# Notifications and SMS are short; longer input is truncated before matching
MAX_TEXT_LENGTH = 2000

BASE_CONFIDENCE = 50

# (phrases, bonus): a bonus applies once if any of its phrases is present
CONFIDENCE_BONUSES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("upi", "bhim"), 20),
    (("transaction successful", "payment successful"), 15),
    (("credited to account", "amount credited"), 15),
    (("reference", "txn id"), 10),
    (("bank", "account"), 5),
)
KNOWN_APP_BONUS = 10
DECIMAL_AMOUNT_BONUS = 5

_TRAILING_PUNCTUATION = ".,;:!?)"


class PaymentTextParser:
    """Extract a ``ParsedCandidate`` from raw payment-confirmation text.

    Args:
        patterns: Pattern table to use (keywords, amount regexes, apps)

    Example:
        >>> parser = PaymentTextParser()
        >>> candidate = parser.parse(
        ...     "You have received Rs. 250.00 via UPI. Txn successful.",
        ...     SourceChannel.NOTIFICATION,
        ... )
        >>> candidate.amount, candidate.content_confidence
        (Decimal('250.00'), 75)
    """

    def __init__(self, patterns: PatternTable = DEFAULT_PATTERNS) -> None:
        self.patterns = patterns

    def parse(
        self,
        raw_text: object,
        source_channel: SourceChannel | str = SourceChannel.NOTIFICATION,
        observed_at: datetime | None = None,
    ) -> ParsedCandidate | None:
        """Parse one text.

        Args:
            raw_text: Notification title+body or SMS body
            source_channel: Where the text came from
            observed_at: When the text was received (defaults to now, UTC)

        Returns:
            Candidate, or None if the text is not a usable payment confirmation
        """
        if not isinstance(raw_text, str) or not raw_text.strip():
            return None

        try:
            channel = SourceChannel(source_channel)
        except ValueError:
            logger.warning("unknown_source_channel", source_channel=str(source_channel))
            return None

        text = " ".join(raw_text[:MAX_TEXT_LENGTH].split())
        lowered = text.lower()

        if not self._passes_keyword_gate(lowered):
            return None

        extracted = self._extract_amount(text)
        if extracted is None:
            logger.debug("amount_not_found", source_channel=channel.value)
            return None
        amount, amount_text = extracted

        source_app = self.patterns.find_app(text)
        candidate = ParsedCandidate(
            amount=amount,
            source_channel=channel,
            observed_at=observed_at or datetime.now(UTC),
            content_confidence=self._score(lowered, amount_text, source_app),
            raw_text=raw_text,
            amount_text=amount_text,
            reference=self._extract_reference(text),
            counterparty_label=self._extract_counterparty(text),
            source_app=source_app,
        )

        logger.debug(
            "candidate_parsed",
            source_channel=channel.value,
            amount=str(candidate.amount),
            content_confidence=candidate.content_confidence,
            source_app=source_app,
        )
        return candidate

    def _passes_keyword_gate(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.patterns.confirmation_keywords)

    def _extract_amount(self, text: str) -> tuple[Decimal, str] | None:
        for pattern in self.patterns.amount_patterns:
            found = pattern.search(text)
            if found is None:
                continue

            amount_text = found.group(1)
            try:
                amount = Decimal(amount_text.replace(",", ""))
            except InvalidOperation:
                return None
            if not amount.is_finite() or amount <= 0:
                return None
            return amount, amount_text
        return None

    def _extract_reference(self, text: str) -> str | None:
        found = self.patterns.reference_pattern.search(text)
        return found.group(1) if found else None

    def _extract_counterparty(self, text: str) -> str | None:
        for pattern in self.patterns.counterparty_patterns:
            for found in pattern.finditer(text):
                label = _clean_label(found.group(1))
                if label:
                    return label
        return None

    def _score(self, lowered: str, amount_text: str, source_app: str | None) -> int:
        score = BASE_CONFIDENCE
        for phrases, bonus in CONFIDENCE_BONUSES:
            if any(phrase in lowered for phrase in phrases):
                score += bonus
        if source_app is not None:
            score += KNOWN_APP_BONUS
        if "." in amount_text:
            score += DECIMAL_AMOUNT_BONUS
        return max(0, min(100, score))


def _clean_label(captured: str) -> str | None:
    """Cut a captured payer name at the first stopword or sentence end."""
    words: list[str] = []
    for word in captured.split():
        bare = word.rstrip(_TRAILING_PUNCTUATION)
        if not bare or bare.lower() in COUNTERPARTY_STOPWORDS:
            break
        words.append(bare)
        if word != bare:
            break

    if not words or words[0].lower() in COUNTERPARTY_REJECT:
        return None
    return " ".join(words)
