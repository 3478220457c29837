"""
Batch dispatch to the inference backend.

Each formed batch is sent to the backend as one call on a worker thread, so
the scheduling loop keeps forming the next batch while earlier ones are in
flight. A bounded number of in-flight slots caps backend load. The backend
contract is all-or-nothing: a raised exception, a missed deadline or a wrong
number of outputs fails every request of the batch with the same error.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Optional

from ..backends.base import InferenceBackend
from ..errors import BackendError, BackendTimeoutError
from ..logging import correlation_scope, get_logger
from ..metrics import SchedulerMetrics
from ..types import Batch
from ..utils.timers import time_operation

logger = get_logger(__name__)


class BatchDispatcher:
    """
    Sends batches to a backend with bounded concurrency.

    Callers must hold a slot (``acquire_slot``) before calling ``dispatch``;
    the slot is released when the batch reaches a terminal state.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        max_inflight_batches: int = 2,
        backend_timeout_s: float = 30.0,
        metrics: Optional[SchedulerMetrics] = None,
    ):
        if max_inflight_batches < 1:
            raise ValueError("max_inflight_batches must be at least 1")
        if backend_timeout_s <= 0:
            raise ValueError("backend_timeout_s must be positive")

        self.backend = backend
        self.max_inflight_batches = max_inflight_batches
        self.backend_timeout_s = backend_timeout_s
        self.metrics = metrics or SchedulerMetrics()

        self._slots = threading.BoundedSemaphore(max_inflight_batches)
        self._workers = ThreadPoolExecutor(
            max_workers=max_inflight_batches, thread_name_prefix="DynabatchDispatch"
        )
        # Backend calls run apart from the workers so a hung call cannot
        # keep a worker past its deadline.
        self._calls = self._new_call_pool()
        # Timed-out calls still running in the current call pool
        self._abandoned = 0

        self._lock = threading.Lock()
        self._inflight = 0
        self.total_abandoned = 0
        self.total_dispatched = 0
        self.total_failed = 0

    @property
    def inflight(self) -> int:
        with self._lock:
            return self._inflight

    def acquire_slot(self, timeout: Optional[float] = None) -> bool:
        """Block until an in-flight slot is free. Returns False on timeout."""
        if timeout is None:
            return self._slots.acquire()
        return self._slots.acquire(timeout=timeout)

    def release_slot(self):
        """Give back a slot that was acquired but not used for a dispatch."""
        self._slots.release()

    def dispatch(self, batch: Batch) -> Future:
        """Hand ``batch`` to a worker. The caller must already hold a slot.

        Raises:
            RuntimeError: The dispatcher has been shut down
        """
        with self._lock:
            future = self._workers.submit(self._run_batch, batch)
            self._inflight += 1
            self.total_dispatched += 1
            inflight = self._inflight

        self.metrics.record_inflight(inflight)
        return future

    def _run_batch(self, batch: Batch) -> int:
        """Execute one backend call and resolve every request of the batch."""
        with correlation_scope(batch.batch_id):
            try:
                return self._execute(batch)
            finally:
                with self._lock:
                    self._inflight -= 1
                    inflight = self._inflight
                self._slots.release()
                self.metrics.record_inflight(inflight)

    def _execute(self, batch: Batch) -> int:
        timer = None
        try:
            batch.mark_dispatched()

            logger.debug(
                "Dispatching batch",
                batch_id=batch.batch_id,
                batch_size=batch.size,
                trigger=batch.trigger.value,
                request_ids=batch.request_ids[:5],
            )

            with time_operation(
                "backend_predict", {"batch_id": batch.batch_id, "batch_size": batch.size}
            ) as timer:
                outputs = self._call_backend(batch)

            if len(outputs) != batch.size:
                raise BackendError(
                    f"backend returned {len(outputs)} outputs for {batch.size} inputs"
                )

            delivered = batch.complete(outputs)

            self.metrics.record_batch_completed(batch.size, timer.result.duration_seconds)
            for req in batch.requests:
                self.metrics.record_request_latency(
                    (req.dispatched_at - req.arrival_time) * 1000,
                    (req.finished_at - req.arrival_time) * 1000,
                )

            logger.info(
                "Batch completed",
                batch_id=batch.batch_id,
                batch_size=batch.size,
                duration_ms=timer.result.duration_ms,
            )
            return delivered

        except BaseException as e:
            error = self._as_backend_error(e, batch)
            delivered = batch.fail(error)
            duration = timer.elapsed if timer is not None else 0.0

            with self._lock:
                self.total_failed += 1
            self.metrics.record_batch_failed(batch.size, duration, type(error).__name__)

            logger.error(
                "Batch failed",
                batch_id=batch.batch_id,
                batch_size=batch.size,
                error_type=type(e).__name__,
                error=str(e),
            )
            if not isinstance(e, Exception):
                raise
            return delivered

    def _new_call_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.max_inflight_batches * 2, thread_name_prefix="DynabatchBackend"
        )

    def _call_backend(self, batch: Batch) -> list:
        with self._lock:
            pool = self._calls
            call = pool.submit(self.backend.predict, batch.inputs, self.backend_timeout_s)
        try:
            return list(call.result(timeout=self.backend_timeout_s))
        except FuturesTimeoutError:
            self._abandon(call, pool, batch)
            raise BackendTimeoutError(self.backend_timeout_s, backend=self.backend.name)

    def _abandon(self, call: Future, pool: ThreadPoolExecutor, batch: Batch):
        """Give up on a timed-out call; swap the call pool once hung calls fill half of it."""
        # A call that never started is simply dropped
        if call.cancel():
            return

        replaced = False
        with self._lock:
            self.total_abandoned += 1
            if pool is self._calls:
                self._abandoned += 1
                if self._abandoned >= self.max_inflight_batches:
                    self._calls = self._new_call_pool()
                    self._abandoned = 0
                    replaced = True

        call.add_done_callback(lambda _: self._call_returned(pool))
        logger.warning(
            "Backend call abandoned after timeout",
            batch_id=batch.batch_id,
            timeout_s=self.backend_timeout_s,
            total_abandoned=self.total_abandoned,
        )

        if replaced:
            # Hung threads stay with the old pool until their calls return
            pool.shutdown(wait=False)
            logger.warning("Backend call pool replaced", hung_calls=self.max_inflight_batches)

    def _call_returned(self, pool: ThreadPoolExecutor):
        with self._lock:
            if pool is self._calls and self._abandoned > 0:
                self._abandoned -= 1

    def _as_backend_error(self, error: BaseException, batch: Batch) -> BackendError:
        """Re-raise any failure as a BackendError tagged with the batch."""
        if isinstance(error, BackendTimeoutError):
            wrapped = BackendTimeoutError(
                error.timeout_seconds,
                batch_id=batch.batch_id,
                request_ids=batch.request_ids,
                backend=self.backend.name,
            )
        elif isinstance(error, BackendError):
            wrapped = BackendError(
                error.reason,
                batch_id=batch.batch_id,
                request_ids=batch.request_ids,
                backend=self.backend.name,
            )
        else:
            wrapped = BackendError(
                f"{type(error).__name__}: {error}",
                batch_id=batch.batch_id,
                request_ids=batch.request_ids,
                backend=self.backend.name,
            )

        wrapped.__cause__ = error
        return wrapped

    def shutdown(self, wait: bool = True):
        """Stop accepting batches; optionally wait for in-flight ones to finish."""
        self._workers.shutdown(wait=wait)
        # Abandoned hung calls must not block shutdown
        with self._lock:
            calls = self._calls
        calls.shutdown(wait=False)
        logger.debug("Dispatcher shut down", total_dispatched=self.total_dispatched)
