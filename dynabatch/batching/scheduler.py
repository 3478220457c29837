"""
Dynamic Batching Scheduler

Accepts single inference requests from any number of producer threads or
asyncio tasks, groups them into batches and hands the batches to the
dispatcher. A batch closes when the pending queue reaches the preferred
batch size or when the oldest pending request has waited the maximum queue
delay, whichever comes first.

One scheduling thread owns the pending queue. Producers reach it only
through an inbox queue, and the only state they share with it is the
admission counter used for backpressure.
"""

import asyncio
import itertools
import queue
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Any, Deque, Dict, Optional

from ..backends.base import InferenceBackend
from ..config import SchedulerConfig, get_config
from ..errors import SchedulerClosedError, raise_queue_full
from ..logging import get_logger
from ..metrics import SchedulerMetrics
from ..types import Batch, BatchTrigger, InferenceRequest, InferenceResult
from .dispatcher import BatchDispatcher
from .policy import BatchPolicy

logger = get_logger(__name__)

# Inbox sentinel: everything admitted before it is already in the inbox
_STOP = object()


class BatchingScheduler:
    """
    Dynamic batching scheduler in front of an inference backend.

    Features:
    - Dual-trigger batch formation (preferred size or max queue delay)
    - Immediate rejection at the backlog limit
    - Pipelined dispatch bounded by max in-flight batches
    - Exactly one result or error per admitted request
    """

    def __init__(
        self,
        backend: InferenceBackend,
        config: Optional[SchedulerConfig] = None,
        metrics: Optional[SchedulerMetrics] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            backend: Inference backend batches are dispatched to
            config: Scheduler configuration (from global config if None)
            metrics: Metrics recorder (a fresh one if None)
        """
        global_config = get_config()

        self.backend = backend
        self.config = config or global_config.scheduler
        self.policy = BatchPolicy.from_config(self.config)
        self.metrics = metrics or SchedulerMetrics(enabled=global_config.logging.enable_metrics)

        self.dispatcher: Optional[BatchDispatcher] = None

        # Producer side
        self._inbox: "queue.SimpleQueue[Any]" = queue.SimpleQueue()
        self._admission_lock = threading.Lock()
        self._accepting = False
        self._drain_on_stop = True
        self._pending_count = 0

        # Scheduling loop side
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self._batch_seq = itertools.count(1)

        # Statistics
        self.total_submitted = 0
        self.total_rejected = 0
        self.total_batches = 0
        self.batch_triggers: Dict[str, int] = {trigger.value: 0 for trigger in BatchTrigger}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_count(self) -> int:
        """Requests admitted but not yet placed into a batch."""
        with self._admission_lock:
            return self._pending_count

    def start(self):
        """Start the scheduling loop."""
        with self._admission_lock:
            if self._accepting:
                return
            previous = self._thread

        # A loop left running by a timed-out stop still owns the old dispatcher
        if previous is not None:
            previous.join()

        with self._admission_lock:
            if self._accepting:
                return

            self.dispatcher = BatchDispatcher(
                self.backend,
                max_inflight_batches=self.config.max_inflight_batches,
                backend_timeout_s=self.config.backend_timeout_s,
                metrics=self.metrics,
            )
            self._stopping = False
            self._accepting = True
            self._thread = threading.Thread(
                target=self._run, args=(self.dispatcher,), name="DynabatchScheduler", daemon=True
            )
            self._thread.start()

        logger.info(
            "Batching scheduler started",
            backend=self.backend.name,
            max_batch_size=self.config.max_batch_size,
            preferred_batch_size=self.config.preferred_batch_size,
            max_queue_delay_ms=self.config.max_queue_delay_ms,
            backlog_limit=self.config.backlog_limit,
            max_inflight_batches=self.config.max_inflight_batches,
        )

    def stop(self, drain: bool = True, timeout: Optional[float] = None):
        """
        Stop the scheduler.

        Args:
            drain: Dispatch every pending request before stopping. When False,
                pending requests fail with SchedulerClosedError.
            timeout: Maximum seconds to wait for the scheduling loop. If it
                is still running afterwards it finishes in the background and
                shuts the dispatcher down itself.
        """
        with self._admission_lock:
            if not self._accepting:
                return
            self._accepting = False
            self._drain_on_stop = drain
            self._inbox.put(_STOP)

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    "Scheduling loop still running after stop timeout",
                    timeout_s=timeout,
                    pending=self.pending_count,
                )
                return

        logger.info(
            "Batching scheduler stopped",
            drained=drain,
            total_submitted=self.total_submitted,
            total_batches=self.total_batches,
        )

    def submit(self, payload: Any, request_id: Optional[str] = None) -> "Future[InferenceResult]":
        """
        Submit one request for batched inference.

        Args:
            payload: Input for a single inference item
            request_id: Caller-supplied identifier (a uuid4 if None)

        Returns:
            Future resolving to an InferenceResult, or raising BackendError
            if the batch containing the request fails

        Raises:
            SchedulerClosedError: The scheduler is not running
            QueueFullError: The pending backlog has reached its limit
        """
        if request_id:
            request = InferenceRequest(payload=payload, request_id=request_id)
        else:
            request = InferenceRequest(payload=payload)

        with self._admission_lock:
            if not self._accepting:
                raise SchedulerClosedError()

            if self._pending_count >= self.config.backlog_limit:
                self.total_rejected += 1
                pending = self._pending_count
                self.metrics.record_rejected(pending)
                logger.warning(
                    "Request rejected, backlog full",
                    request_id=request.request_id,
                    pending=pending,
                    backlog_limit=self.config.backlog_limit,
                )
                raise_queue_full(pending, self.config.backlog_limit)

            self._pending_count += 1
            self.total_submitted += 1
            pending = self._pending_count
            self._inbox.put(request)

        self.metrics.record_submitted(pending)
        logger.debug("Request queued", request_id=request.request_id, pending=pending)

        return request.future

    async def submit_async(self, payload: Any, request_id: Optional[str] = None) -> InferenceResult:
        """Submit from an asyncio task and await the result."""
        return await asyncio.wrap_future(self.submit(payload, request_id))

    def predict(self, payload: Any, timeout: Optional[float] = None) -> Any:
        """Submit and block until the output for ``payload`` is available."""
        return self.submit(payload).result(timeout=timeout).output

    def _run(self, dispatcher: BatchDispatcher):
        """Scheduling loop: the only mutator of the pending queue."""
        pending: Deque[InferenceRequest] = deque()
        logger.debug("Scheduling loop started")

        try:
            while True:
                if not self._stopping:
                    self._receive(pending, self._wait_timeout(pending))

                if self._stopping and not self._drain_on_stop:
                    self._fail_pending(pending, SchedulerClosedError("stopped without draining"))
                    break

                self._form_ready_batches(pending)

                if self._stopping and not pending:
                    break

        except Exception as e:
            logger.exception("Scheduling loop crashed", error=str(e))
            with self._admission_lock:
                self._accepting = False
            self._fail_pending(pending, SchedulerClosedError("scheduling loop crashed"))

        finally:
            # Waits for in-flight batches, each bounded by the backend timeout
            dispatcher.shutdown(wait=True)

        logger.debug("Scheduling loop stopped")

    def _wait_timeout(self, pending: Deque[InferenceRequest]) -> Optional[float]:
        """Time until the oldest pending request's deadline; None blocks until an arrival."""
        if not pending:
            return None
        return max(0.0, self.policy.deadline(pending[0].arrival_time) - time.monotonic())

    def _receive(self, pending: Deque[InferenceRequest], timeout: Optional[float]):
        """Wait up to ``timeout`` for an arrival, then drain whatever else is queued."""
        try:
            message = self._inbox.get(timeout=timeout)
        except queue.Empty:
            return

        while True:
            if message is _STOP:
                self._stopping = True
                return

            pending.append(message)

            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return

    def _form_ready_batches(self, pending: Deque[InferenceRequest]):
        """Close and dispatch batches while a trigger fires."""
        while pending:
            if self._stopping and not self._drain_on_stop:
                return

            if self._stopping:
                trigger = BatchTrigger.DRAIN
            else:
                trigger = self.policy.trigger(
                    len(pending), pending[0].arrival_time, time.monotonic()
                )

            if trigger is None:
                return

            # Blocks while max_inflight_batches are already with the backend
            self.dispatcher.acquire_slot()

            # Top up from requests that arrived while waiting for a slot
            if not self._stopping:
                self._receive(pending, timeout=0)
                if self._stopping and not self._drain_on_stop:
                    self.dispatcher.release_slot()
                    return

            requests = self.policy.take(pending)
            batch = Batch(
                batch_id=f"batch-{next(self._batch_seq):06d}", requests=requests, trigger=trigger
            )
            batch.mark_batched()

            with self._admission_lock:
                self._pending_count -= batch.size
                remaining = self._pending_count

            self.total_batches += 1
            self.batch_triggers[trigger.value] += 1
            self.metrics.record_batch_formed(batch.size, trigger.value, batch.wait_ms, remaining)

            logger.info(
                "Batch formed",
                batch_id=batch.batch_id,
                batch_size=batch.size,
                trigger=trigger.value,
                wait_ms=round(batch.wait_ms, 3),
                pending=remaining,
            )

            try:
                self.dispatcher.dispatch(batch)
            except RuntimeError as e:
                self.dispatcher.release_slot()
                failed = batch.fail(SchedulerClosedError("dispatcher is shut down"))
                self.metrics.record_requests_failed(failed, "scheduler_closed")
                logger.error("Batch dispatch refused", batch_id=batch.batch_id, error=str(e))

    def _fail_pending(self, pending: Deque[InferenceRequest], error: SchedulerClosedError):
        """Fail every request still owned by the scheduler."""
        # Requests may still sit in the inbox if the loop crashed
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break
            if message is not _STOP:
                pending.append(message)

        failed = 0
        while pending:
            failed += pending.popleft().fail(error)

        with self._admission_lock:
            self._pending_count -= failed

        self.metrics.record_requests_failed(failed, "scheduler_closed")
        if failed:
            logger.warning("Pending requests failed", count=failed, reason=error.reason)

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        snapshot = self.metrics.collector.snapshot()

        return {
            "is_running": self.is_running,
            "pending": self.pending_count,
            "inflight": self.dispatcher.inflight if self.dispatcher else 0,
            "total_submitted": self.total_submitted,
            "total_rejected": self.total_rejected,
            "total_batches": self.total_batches,
            "batch_triggers": dict(self.batch_triggers),
            "failed_batches": self.dispatcher.total_failed if self.dispatcher else 0,
            "metrics": snapshot,
            "config": {
                "max_batch_size": self.config.max_batch_size,
                "preferred_batch_size": self.config.preferred_batch_size,
                "max_queue_delay_ms": self.config.max_queue_delay_ms,
                "backlog_limit": self.config.backlog_limit,
                "max_inflight_batches": self.config.max_inflight_batches,
                "backend_timeout_s": self.config.backend_timeout_s,
            },
        }

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.stop(drain=True)
