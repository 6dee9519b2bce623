"""Exception hierarchy for payconfirm.

All exceptions carry a human-readable message plus structured context so they
can be logged with structlog without losing detail.

Usage:
    from payconfirm.exceptions import ValidationError

    try:
        registry.track("P1", Decimal("0"), "merchant@upi")
    except ValidationError as e:
        logger.error("track_rejected", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class PayConfirmError(Exception):
    """Base exception for all payconfirm errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Input Errors
# =============================================================================


class ValidationError(PayConfirmError):
    """Raised when a request is rejected at the call boundary.

    Used for non-positive amounts, empty payment ids and similar constraint
    violations. Never raised for unparseable notification text.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error description
            field: Name of the invalid field
            value: The invalid value (truncated in context)
            constraint: Validation constraint that was violated
            **kwargs: Additional context
        """
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        if constraint:
            context["constraint"] = constraint
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class ConfigurationError(PayConfirmError):
    """Raised when engine configuration is inconsistent."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        if expected:
            context["expected"] = expected
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(PayConfirmError):
    """Raised when the confirmation audit log cannot be read or written."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if path:
            context["path"] = path
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Ingestion Errors
# =============================================================================


class IngestionError(PayConfirmError):
    """Raised when an ingestion adapter cannot be started or polled."""

    def __init__(
        self,
        message: str,
        *,
        adapter: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if adapter:
            context["adapter"] = adapter
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    error: Exception,
    message: str,
    *,
    exception_class: type[PayConfirmError] = PayConfirmError,
    **context: Any,
) -> PayConfirmError:
    """Wrap an external exception in the payconfirm hierarchy.

    Example:
        try:
            path.write_text(payload)
        except OSError as e:
            raise wrap_exception(
                e,
                "Failed to write confirmation log",
                exception_class=PersistenceError,
                path=str(path),
            )
    """
    return exception_class(
        message,
        context=context,
        original_error=error,
    )


__all__ = [
    "PayConfirmError",
    "ValidationError",
    "ConfigurationError",
    "PersistenceError",
    "IngestionError",
    "wrap_exception",
]
