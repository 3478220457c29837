"""
Error Definitions for Dynabatch

This module defines the exception classes raised by the batching scheduler,
its dispatcher and the inference backends. Every error carries a message and
a details mapping so that it can be logged as structured data.
"""

from typing import Any, Dict, List, Optional


class DynabatchError(Exception):
    """Base exception class for all Dynabatch errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class QueueFullError(DynabatchError):
    """Raised by submit when the pending backlog has reached its limit."""

    def __init__(self, pending: int, backlog_limit: int, **details):
        message = f"Request queue full: {pending} pending requests (backlog limit {backlog_limit})"

        super().__init__(message, {"pending": pending, "backlog_limit": backlog_limit, **details})
        self.pending = pending
        self.backlog_limit = backlog_limit


class SchedulerClosedError(DynabatchError):
    """Raised when a request cannot be served because the scheduler is stopped."""

    def __init__(self, reason: str = "scheduler is not running", **details):
        super().__init__(f"Scheduler closed: {reason}", {"reason": reason, **details})
        self.reason = reason


class BackendError(DynabatchError):
    """Raised when an inference backend call fails.

    The backend contract is all-or-nothing per batch, so the same error is
    delivered to every request of the affected batch.
    """

    def __init__(
        self,
        reason: str,
        batch_id: Optional[str] = None,
        request_ids: Optional[List[str]] = None,
        **details,
    ):
        if batch_id:
            message = f"Backend error for batch {batch_id}: {reason}"
        else:
            message = f"Backend error: {reason}"

        super().__init__(message, {"reason": reason, "batch_id": batch_id, **details})
        self.reason = reason
        self.batch_id = batch_id
        self.request_ids = list(request_ids or [])


class BackendTimeoutError(BackendError):
    """Raised when a backend call exceeds its deadline."""

    def __init__(
        self,
        timeout_seconds: float,
        batch_id: Optional[str] = None,
        request_ids: Optional[List[str]] = None,
        **details,
    ):
        super().__init__(
            f"call exceeded {timeout_seconds}s deadline",
            batch_id=batch_id,
            request_ids=request_ids,
            timeout_seconds=timeout_seconds,
            **details,
        )
        self.timeout_seconds = timeout_seconds


class ConfigurationError(DynabatchError):
    """Raised when configuration is invalid or inconsistent."""

    def __init__(self, field: str, value: Any, expected: str, **details):
        message = f"Invalid configuration for {field}: got {value}, expected {expected}"

        super().__init__(message, {"field": field, "value": value, "expected": expected, **details})
        self.field = field
        self.value = value
        self.expected = expected


class InvalidStateTransitionError(DynabatchError):
    """Raised when a request is moved along an edge its state machine does not allow."""

    def __init__(self, request_id: str, from_state: Any, to_state: Any):
        from_name = getattr(from_state, "name", from_state)
        to_name = getattr(to_state, "name", to_state)
        message = f"Invalid state transition for request {request_id}: {from_name} -> {to_name}"

        super().__init__(
            message, {"request_id": request_id, "from_state": from_name, "to_state": to_name}
        )
        self.request_id = request_id
        self.from_state = from_state
        self.to_state = to_state


# Convenience functions for common error patterns


def raise_queue_full(pending: int, backlog_limit: int, **details):
    """Raise a queue full error with a hint for the caller."""
    details.setdefault("suggestion", "Retry later or raise BACKLOG_LIMIT")
    raise QueueFullError(pending, backlog_limit, **details)


def raise_configuration_error(field: str, value: Any, expected: str, **details):
    """Raise a configuration error with helpful context."""
    suggestions = {
        "max_batch_size": "Set MAX_BATCH_SIZE to a positive integer",
        "preferred_batch_size": "Set PREFERRED_BATCH_SIZE between 1 and MAX_BATCH_SIZE",
        "max_queue_delay_ms": "Set MAX_QUEUE_DELAY_MS to a non-negative number",
        "backlog_limit": "Set BACKLOG_LIMIT to a positive integer",
        "max_inflight_batches": "Set MAX_INFLIGHT_BATCHES to a positive integer",
    }

    suggestion = suggestions.get(field.lower())
    if suggestion:
        details["suggestion"] = suggestion

    raise ConfigurationError(field, value, expected, **details)
