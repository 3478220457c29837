"""
Batch formation policy.

Decides when the pending queue should be closed into a batch and how many
requests the batch takes. The policy holds no state of its own; the
scheduling loop calls it with the queue it owns.
"""

from collections import deque
from typing import Deque, List, Optional

from ..types import BatchTrigger, InferenceRequest


class BatchPolicy:
    """Dual-trigger batching: preferred size or maximum queue delay, whichever comes first."""

    def __init__(self, max_batch_size: int, preferred_batch_size: int, max_queue_delay_s: float):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if not 1 <= preferred_batch_size <= max_batch_size:
            raise ValueError("preferred_batch_size must be between 1 and max_batch_size")
        if max_queue_delay_s < 0:
            raise ValueError("max_queue_delay_s must be non-negative")

        self.max_batch_size = max_batch_size
        self.preferred_batch_size = preferred_batch_size
        self.max_queue_delay_s = max_queue_delay_s

    @classmethod
    def from_config(cls, scheduler_config) -> "BatchPolicy":
        return cls(
            max_batch_size=scheduler_config.max_batch_size,
            preferred_batch_size=scheduler_config.preferred_batch_size,
            max_queue_delay_s=scheduler_config.max_queue_delay_s,
        )

    def deadline(self, oldest_arrival: float) -> float:
        """Monotonic instant by which the oldest pending request must be dispatched."""
        return oldest_arrival + self.max_queue_delay_s

    def trigger(
        self, pending_count: int, oldest_arrival: Optional[float], now: float
    ) -> Optional[BatchTrigger]:
        """Return the trigger that closes a batch now, or None to keep waiting."""
        if pending_count <= 0 or oldest_arrival is None:
            return None

        if pending_count >= self.preferred_batch_size:
            return BatchTrigger.PREFERRED_SIZE

        if now >= self.deadline(oldest_arrival):
            return BatchTrigger.MAX_QUEUE_DELAY

        return None

    def take(self, pending: Deque[InferenceRequest]) -> List[InferenceRequest]:
        """Pop up to max_batch_size requests from the head of ``pending``."""
        count = min(len(pending), self.max_batch_size)
        return [pending.popleft() for _ in range(count)]

    def __repr__(self) -> str:
        return (
            f"BatchPolicy(max_batch_size={self.max_batch_size}, "
            f"preferred_batch_size={self.preferred_batch_size}, "
            f"max_queue_delay_s={self.max_queue_delay_s})"
        )


def plan_batches(policy: BatchPolicy, arrivals: List[float]) -> List[int]:
    """Replay arrival times (seconds) through ``policy`` and return the batch sizes formed.

    Assumes the dispatch pipeline is never saturated, so every batch closes
    exactly when its trigger fires.
    """
    pending: Deque[InferenceRequest] = deque()
    sizes: List[int] = []
    events = sorted(arrivals)
    idx = 0

    while idx < len(events) or pending:
        next_arrival = events[idx] if idx < len(events) else None
        deadline = policy.deadline(pending[0].arrival_time) if pending else None

        if next_arrival is not None and (deadline is None or next_arrival < deadline):
            now = next_arrival
            pending.append(InferenceRequest(payload=None, arrival_time=now))
            idx += 1
        else:
            now = deadline

        oldest = pending[0].arrival_time if pending else None
        while policy.trigger(len(pending), oldest, now) is not None:
            sizes.append(len(policy.take(pending)))
            oldest = pending[0].arrival_time if pending else None

    return sizes
