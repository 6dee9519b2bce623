"""payconfirm - automatic confirmation of incoming UPI payments.

Scans notification and SMS text for payment-confirmation language, extracts
the amount and metadata, and matches it against the payments the checkout
flow is currently waiting for.

Example:
    >>> from payconfirm import ConfirmationEngine, SourceChannel
    >>> engine = ConfirmationEngine()
    >>> engine.track_payment("P1", "250.00", "merchant@upi", "Asha")
    >>> engine.deliver_event("You have received Rs. 250.00 via UPI.", SourceChannel.SMS)
"""

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "ConfirmationEngine",
    "SourceChannel",
    "PaymentStatus",
    "MatchDecision",
]

from .confirmation.domain.enums import MatchDecision, PaymentStatus, SourceChannel
from .confirmation.engine import ConfirmationEngine
