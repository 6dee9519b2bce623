"""Domain models for payment confirmation.

Value objects are frozen dataclasses: status transitions on a pending payment
produce a new instance, so a snapshot handed to the matcher can never change
underneath it. ``ConfirmationRecord`` is a frozen pydantic model because it is
the only type that is serialized to the audit log.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ...exceptions import ValidationError
from .enums import PaymentStatus, SourceChannel

AMOUNT_TOLERANCE = Decimal("0.01")


def to_amount(value: Any, *, field: str = "amount") -> Decimal:
    """Coerce a caller-supplied amount to a positive Decimal.

    Floats go through ``str`` so ``250.1`` becomes ``Decimal("250.1")``
    rather than its binary expansion.

    Raises:
        ValidationError: If the value is not a finite number greater than zero
    """
    if isinstance(value, bool):
        raise ValidationError("Amount must be numeric", field=field, value=value)

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(
            "Amount must be numeric", field=field, value=value, original_error=e
        ) from e

    if not amount.is_finite():
        raise ValidationError("Amount must be finite", field=field, value=value)
    if amount <= 0:
        raise ValidationError(
            "Amount must be greater than zero", field=field, value=value, constraint="> 0"
        )
    return amount


def amounts_match(left: Decimal, right: Decimal) -> bool:
    """Strict amount equality used by the matcher (difference below one paisa)."""
    return abs(left - right) < AMOUNT_TOLERANCE


@dataclass(frozen=True)
class PendingPayment:
    """A payment the merchant is currently waiting to receive.

    Attributes:
        payment_id: Unique id assigned by the checkout flow
        expected_amount: Amount the customer was asked to pay (> 0)
        payee_identifier: Merchant UPI address, canonicalized to lowercase
        customer_label: Optional display name of the customer
        created_at: When tracking started (UTC)
        status: Lifecycle status
    """

    payment_id: str
    expected_amount: Decimal
    payee_identifier: str
    created_at: datetime
    customer_label: str | None = None
    status: PaymentStatus = PaymentStatus.PENDING

    def with_status(self, status: PaymentStatus) -> PendingPayment:
        return replace(self, status=status)

    def age_at(self, moment: datetime) -> timedelta:
        return moment - self.created_at

    def __repr__(self) -> str:
        return (
            f"<PendingPayment(payment_id='{self.payment_id}', "
            f"expected_amount={self.expected_amount}, "
            f"status='{self.status.value}')>"
        )


@dataclass(frozen=True)
class ParsedCandidate:
    """Payment signal extracted from one notification or SMS.

    Attributes:
        amount: Credited amount
        source_channel: Notification or SMS
        observed_at: When the text was received
        content_confidence: Heuristic trust in the text itself (0-100)
        raw_text: The original text
        amount_text: Amount exactly as written (before separator stripping)
        reference: UPI reference / transaction id, if present
        counterparty_label: Payer name, if present
        source_app: Display name of the payment app, if recognised
    """

    amount: Decimal
    source_channel: SourceChannel
    observed_at: datetime
    content_confidence: int
    raw_text: str
    amount_text: str = ""
    reference: str | None = None
    counterparty_label: str | None = None
    source_app: str | None = None

    def with_counterparty(self, label: str | None) -> ParsedCandidate:
        return replace(self, counterparty_label=label)


@dataclass(frozen=True)
class MatchResult:
    """Best pending payment a candidate plausibly confirms.

    ``competing_matches`` counts the other pending payments that also passed
    the amount and recency filters. When it is non-zero the age tie-break
    picked the winner and the attribution may be wrong.
    """

    payment_id: str
    candidate: ParsedCandidate
    match_confidence: int
    pending: PendingPayment
    competing_matches: int = 0

    @property
    def is_ambiguous(self) -> bool:
        return self.competing_matches > 0

    def __post_init__(self) -> None:
        if not 0 <= self.match_confidence <= 100:
            raise ValueError(
                f"match_confidence must be between 0 and 100, got {self.match_confidence}"
            )


class ConfirmationRecord(BaseModel):
    """Audit-log entry written once per confirmed payment. Immutable."""

    model_config = ConfigDict(frozen=True)

    payment_id: str
    amount: Decimal
    confirmed_at: datetime
    match_confidence: int = Field(ge=0, le=100)
    manual: bool = False
    reference: str | None = None
    counterparty_label: str | None = None
    source_app: str | None = None
    source_channel: SourceChannel | None = None
    customer_label: str | None = None
