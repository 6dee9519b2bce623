"""Pattern tables for payment-confirmation text.

Notification and SMS parsing share one parser; what differs between sources
is only the table handed to it. ``DEFAULT_PATTERNS`` covers generic
"received/credited" phrasing, UPI apps (Google Pay, PhonePe, Paytm, BHIM)
and Indian bank SMS.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

_FLAGS = re.IGNORECASE | re.DOTALL

CURRENCY = r"(?:₹|\bRs\.?|\bINR)"

# 250 / 250.50 / 1,250.00 / 1,00,000.00 (western and Indian digit grouping).
# Must not be followed by more digits, so 250.005 is rejected rather than read as 250.00.
AMOUNT = r"(\d{1,3}(?:,\d{2,3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)(?![\d.,]*\d)"

# Bounded gap that never runs across a balance figure ("Avl bal Rs 10,000")
GAP = r"(?:(?!\b(?:avl|avail|available|bal|balance)\b).){0,80}?"


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, _FLAGS) for p in patterns)


CONFIRMATION_KEYWORDS: tuple[str, ...] = (
    "received",
    "credited",
    "payment received",
    "money received",
    "upi credit",
    "transaction successful",
    "payment successful",
    "amount credited",
    "payment completed",
    "transfer received",
)

AMOUNT_PATTERNS = _compile(
    # Generic: "received ... Rs 250" and "Rs 250 ... credited"
    rf"(?:received|credited)\b{GAP}{CURRENCY}\s*{AMOUNT}",
    rf"{CURRENCY}\s*{AMOUNT}{GAP}\b(?:received|credited)",
    rf"\b(?:amount|sum)\b{GAP}{CURRENCY}\s*{AMOUNT}",
    # UPI specific
    rf"\bupi\b{GAP}\b(?:received|credited|credit)\b{GAP}{CURRENCY}\s*{AMOUNT}",
    # App specific
    rf"\b(?:gpay|google\s?pay|phonepe|paytm|bhim)\b{GAP}\b(?:received|credited)\b{GAP}{CURRENCY}\s*{AMOUNT}",
    # Bank SMS
    rf"(?:\baccount\b|\ba/c\b|\bacct\b){GAP}\bcredited\b{GAP}{CURRENCY}\s*{AMOUNT}",
    rf"\b(?:transaction|txn)\b{GAP}\bsuccessful\b{GAP}{CURRENCY}\s*{AMOUNT}",
    # Trailing currency: "received 250 rupees"
    rf"(?:received|credited)\b{GAP}\b{AMOUNT}\s*(?:rupees\b|rs\b|inr\b)",
)

REFERENCE_PATTERN = re.compile(
    r"\b(?:upi\s+ref(?:erence)?(?:\s+no\.?)?"
    r"|ref(?:erence)?\s+no\.?"
    r"|transaction\s+id"
    r"|txn\s+id"
    r"|utr(?:\s+no\.?)?"
    r"|reference"
    r"|ref)"
    r"\s*[:#.\-]?\s*([a-z0-9]*\d[a-z0-9]*)",
    _FLAGS,
)

COUNTERPARTY_PATTERNS = _compile(
    r"\b(?:received\s+from|from|by|payer)\s*:?\s+"
    r"([a-z][a-z.'\-]*(?:\s+[a-z][a-z.'\-/]*){0,3})",
    r"((?:[a-z][a-z.'\-]*\s+){0,2}[a-z][a-z.'\-]*)\s+(?:has\s+sent|sent\s+you)\b",
)

# Words that end a captured payer name
COUNTERPARTY_STOPWORDS = frozenset(
    {
        "via", "on", "upi", "ref", "using", "through", "to", "in", "has", "at",
        "with", "for", "and", "is", "was", "of", "txn", "rs", "inr", "vpa",
        "account", "a/c", "sent", "credited", "received", "your",
    }
)

# A capture whose first word is one of these is not a name
COUNTERPARTY_REJECT = frozenset({"a", "an", "the", "you", "rs", "inr", "upi", "bank", "account"})

# (alias as it appears in text, display name); first hit wins
APP_ALIASES: tuple[tuple[str, str], ...] = (
    ("google pay", "Google Pay"),
    ("googlepay", "Google Pay"),
    ("gpay", "Google Pay"),
    ("phonepe", "PhonePe"),
    ("paytm", "Paytm"),
    ("bhim", "BHIM UPI"),
    ("amazon pay", "Amazon Pay"),
    ("amazonpay", "Amazon Pay"),
    ("mobikwik", "MobiKwik"),
    ("freecharge", "FreeCharge"),
)


@dataclass(frozen=True)
class PatternTable:
    """Everything the parser needs to recognise one family of messages.

    Attributes:
        confirmation_keywords: Cheap substring gate, checked first
        amount_patterns: Ordered regexes; group 1 is the amount; first hit wins
        reference_pattern: Label-prefixed transaction id; group 1 is the id
        counterparty_patterns: Payer name regexes; group 1 is the name
        app_aliases: Known payment apps as (alias, display name)
    """

    confirmation_keywords: tuple[str, ...] = CONFIRMATION_KEYWORDS
    amount_patterns: tuple[re.Pattern[str], ...] = AMOUNT_PATTERNS
    reference_pattern: re.Pattern[str] = REFERENCE_PATTERN
    counterparty_patterns: tuple[re.Pattern[str], ...] = COUNTERPARTY_PATTERNS
    app_aliases: tuple[tuple[str, str], ...] = APP_ALIASES
    _app_regexes: tuple[tuple[re.Pattern[str], str], ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.confirmation_keywords:
            raise ValueError("At least one confirmation keyword is required")
        if not self.amount_patterns:
            raise ValueError("At least one amount pattern is required")
        for pattern in self.amount_patterns:
            if pattern.groups < 1:
                raise ValueError(f"Amount pattern has no capture group: {pattern.pattern}")

        regexes = tuple(
            (re.compile(rf"\b{re.escape(alias)}\b", re.IGNORECASE), name)
            for alias, name in self.app_aliases
        )
        object.__setattr__(self, "_app_regexes", regexes)

    def find_app(self, text: str) -> str | None:
        """Return the display name of the first known app mentioned in ``text``."""
        for regex, name in self._app_regexes:
            if regex.search(text):
                return name
        return None

    def extend(
        self,
        *,
        keywords: tuple[str, ...] = (),
        amount_patterns: tuple[str, ...] = (),
        app_aliases: tuple[tuple[str, str], ...] = (),
    ) -> PatternTable:
        """Return a copy with extra keywords, amount patterns (tried last) and apps."""
        return replace(
            self,
            confirmation_keywords=self.confirmation_keywords + keywords,
            amount_patterns=self.amount_patterns + _compile(*amount_patterns),
            app_aliases=self.app_aliases + app_aliases,
        )


DEFAULT_PATTERNS = PatternTable()
