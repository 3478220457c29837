"""
Core Type Definitions for Dynabatch

This module defines the request, batch and result types that flow through
the batching scheduler, together with the per-request state machine.
"""

import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, FrozenSet, List, Optional

from .errors import InvalidStateTransitionError


class RequestState(Enum):
    """Lifecycle state of an inference request."""

    QUEUED = auto()  # Admitted, waiting in the pending queue
    BATCHED = auto()  # Placed into a formed batch
    DISPATCHED = auto()  # Batch handed to the inference backend
    COMPLETED = auto()  # Result delivered
    FAILED = auto()  # Error delivered

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED)


_TRANSITIONS: Dict[RequestState, FrozenSet[RequestState]] = {
    RequestState.QUEUED: frozenset({RequestState.BATCHED, RequestState.FAILED}),
    RequestState.BATCHED: frozenset({RequestState.DISPATCHED, RequestState.FAILED}),
    RequestState.DISPATCHED: frozenset({RequestState.COMPLETED, RequestState.FAILED}),
    RequestState.COMPLETED: frozenset(),
    RequestState.FAILED: frozenset(),
}


class BatchTrigger(Enum):
    """Why a batch was closed."""

    PREFERRED_SIZE = "preferred_size"  # Pending queue reached preferred_batch_size
    MAX_QUEUE_DELAY = "max_queue_delay"  # Oldest pending request waited max_queue_delay
    DRAIN = "drain"  # Scheduler is stopping and flushing its queue


@dataclass
class InferenceResult:
    """Successful result for a single request."""

    request_id: str
    output: Any
    batch_id: str
    batch_size: int
    queue_time_ms: float
    latency_ms: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary representation."""
        return {
            "request_id": self.request_id,
            "output": self.output,
            "batch_id": self.batch_id,
            "batch_size": self.batch_size,
            "queue_time_ms": self.queue_time_ms,
            "latency_ms": self.latency_ms,
        }


@dataclass
class InferenceRequest:
    """A single inference request owned by the scheduler until it reaches a batch."""

    payload: Any
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    arrival_time: float = field(default_factory=time.monotonic)
    future: Future = field(default_factory=Future, repr=False)

    state: RequestState = RequestState.QUEUED
    batch_id: Optional[str] = None
    batched_at: Optional[float] = None
    dispatched_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[BaseException] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate the request and pin its future."""
        if not self.request_id:
            raise ValueError("request_id cannot be empty")

        # A running future cannot be cancelled, so a caller that gives up
        # stops waiting without pulling the request out of its batch.
        self.future.set_running_or_notify_cancel()

    @property
    def is_done(self) -> bool:
        return self.state.is_terminal

    def advance(self, new_state: RequestState):
        """Move to ``new_state``, enforcing the request state machine."""
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.request_id, self.state, new_state)

        now = time.monotonic()
        if new_state is RequestState.BATCHED:
            self.batched_at = now
        elif new_state is RequestState.DISPATCHED:
            self.dispatched_at = now
        elif new_state.is_terminal:
            self.finished_at = now

        self.state = new_state

    def complete(self, output: Any, batch_size: int) -> bool:
        """Deliver a successful result. Returns False if already terminal."""
        if self.is_done:
            return False

        self.advance(RequestState.COMPLETED)

        dispatched_at = self.dispatched_at or self.finished_at
        result = InferenceResult(
            request_id=self.request_id,
            output=output,
            batch_id=self.batch_id or "",
            batch_size=batch_size,
            queue_time_ms=(dispatched_at - self.arrival_time) * 1000,
            latency_ms=(self.finished_at - self.arrival_time) * 1000,
        )
        self.future.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        """Deliver a failure. Returns False if already terminal."""
        if self.is_done:
            return False

        self.advance(RequestState.FAILED)
        self.error = error
        self.future.set_exception(error)
        return True


@dataclass
class Batch:
    """An ordered group of requests dispatched to the backend as one call."""

    batch_id: str
    requests: List[InferenceRequest]
    trigger: BatchTrigger
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if not self.requests:
            raise ValueError("a batch must contain at least one request")

    @property
    def size(self) -> int:
        return len(self.requests)

    @property
    def inputs(self) -> List[Any]:
        """Request payloads in arrival order."""
        return [req.payload for req in self.requests]

    @property
    def request_ids(self) -> List[str]:
        return [req.request_id for req in self.requests]

    @property
    def oldest_arrival(self) -> float:
        return self.requests[0].arrival_time

    @property
    def wait_ms(self) -> float:
        """Time the oldest member waited before the batch was closed."""
        return (self.created_at - self.oldest_arrival) * 1000

    def mark_batched(self):
        """Transfer every member from the pending queue into this batch."""
        for req in self.requests:
            req.batch_id = self.batch_id
            req.advance(RequestState.BATCHED)

    def mark_dispatched(self):
        for req in self.requests:
            req.advance(RequestState.DISPATCHED)

    def complete(self, outputs: List[Any]) -> int:
        """Deliver outputs positionally. Returns the number of results delivered."""
        return sum(req.complete(out, self.size) for req, out in zip(self.requests, outputs))

    def fail(self, error: BaseException) -> int:
        """Fail every member uniformly. Returns the number of failures delivered."""
        return sum(req.fail(error) for req in self.requests)
