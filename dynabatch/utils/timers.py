"""
High-precision timing utilities for backend call measurement.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass
class TimingResult:
    """Result of a timing operation."""

    operation: str
    duration_seconds: float
    success: bool
    metadata: Dict[str, Any]

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        return self.duration_seconds * 1000


class Timer:
    """Monotonic timer for measuring operation durations."""

    def __init__(self, operation: str, metadata: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.success = True
        self.result: Optional[TimingResult] = None

    def start(self) -> "Timer":
        """Start the timer."""
        self.start_time = time.perf_counter()
        return self

    def stop(self) -> TimingResult:
        """Stop the timer and return results."""
        if self.start_time is None:
            raise ValueError("Timer not started")

        self.end_time = time.perf_counter()

        self.result = TimingResult(
            operation=self.operation,
            duration_seconds=self.end_time - self.start_time,
            success=self.success,
            metadata=self.metadata,
        )
        return self.result

    @property
    def elapsed(self) -> float:
        """Seconds since start, without stopping the timer."""
        if self.start_time is None:
            return 0.0
        return (self.end_time or time.perf_counter()) - self.start_time

    def mark_failure(self):
        """Mark the operation as failed."""
        self.success = False

    def __enter__(self) -> "Timer":
        """Context manager entry."""
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if exc_type is not None:
            self.mark_failure()
        self.stop()


@contextmanager
def time_operation(operation: str, metadata: Optional[Dict[str, Any]] = None):
    """Context manager for timing operations; logs the result at debug level."""
    timer = Timer(operation, metadata)
    try:
        timer.start()
        yield timer
    except Exception:
        timer.mark_failure()
        raise
    finally:
        result = timer.stop()
        logger.debug(
            "Operation timed",
            operation=operation,
            duration_ms=result.duration_ms,
            success=result.success,
            **(metadata or {}),
        )
