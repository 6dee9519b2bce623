"""Payment confirmation engine.

This package implements automatic confirmation of incoming UPI payments:
- Content parsing of notification/SMS text with confidence scoring
- Registry of payments awaited by the checkout flow
- Amount and time-window matching with deterministic tie-breaks
- Confirmation dispatch (registry, audit log, subscription bus)
- Periodic eviction of stale pending payments
- Ingestion adapters (simulator, inbox poller)
- Prometheus metrics monitoring
"""

__all__ = [
    "ConfirmationEngine",
    "PaymentTextParser",
    "PatternTable",
    "DEFAULT_PATTERNS",
    "PaymentRegistry",
    "PaymentMatcher",
    "classify",
    "ConfirmationDispatcher",
    "CleanupSweeper",
    "ConfirmationStore",
    "InMemoryConfirmationStore",
    "JsonFileConfirmationStore",
    "IngestionAdapter",
    "SimulatedPaymentAdapter",
    "PollingInboxAdapter",
    "InboxMessage",
]

from .dispatcher import ConfirmationDispatcher
from .engine import ConfirmationEngine
from .ingestion import IngestionAdapter, InboxMessage, PollingInboxAdapter, SimulatedPaymentAdapter
from .matcher import PaymentMatcher, classify
from .parser import PaymentTextParser
from .patterns import DEFAULT_PATTERNS, PatternTable
from .registry import PaymentRegistry
from .storage import ConfirmationStore, InMemoryConfirmationStore, JsonFileConfirmationStore
from .sweeper import CleanupSweeper
