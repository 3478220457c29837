"""
Simulated inference backend.

Stands in for a real model server in demos, the ``simulate`` CLI command and
tests. Latency grows with batch size the way batched accelerators do: a fixed
cost per call plus a smaller cost per item.
"""

import threading
import time
from typing import Any, Callable, List, Optional

from ..errors import BackendTimeoutError
from ..logging import get_logger
from ..utils.randfail import FailureConfig, FailureType, RandomFailureInjector
from .base import InferenceBackend

logger = get_logger(__name__)

PREDICT_OPERATION = "predict"


def _identity(item: Any) -> Any:
    return item


class SimulatedBackend(InferenceBackend):
    """Deterministic fake model with optional seeded failure injection."""

    name = "simulated"

    def __init__(
        self,
        latency_ms: float = 5.0,
        per_item_ms: float = 0.5,
        transform: Optional[Callable[[Any], Any]] = None,
        failure_injector: Optional[RandomFailureInjector] = None,
    ):
        if latency_ms < 0 or per_item_ms < 0:
            raise ValueError("simulated latency must be non-negative")

        self.latency_ms = latency_ms
        self.per_item_ms = per_item_ms
        self.transform = transform or _identity
        self.failure_injector = failure_injector

        self.batch_sizes: List[int] = []
        self.calls = 0
        self._lock = threading.Lock()

    @classmethod
    def with_failure_rate(
        cls, failure_rate: float, seed: int = 42, **kwargs
    ) -> "SimulatedBackend":
        """Create a backend whose calls crash with probability ``failure_rate``."""
        injector = RandomFailureInjector(seed=seed)
        if failure_rate > 0:
            injector.configure_failure(
                PREDICT_OPERATION,
                FailureConfig(failure_type=FailureType.BACKEND_CRASH, probability=failure_rate),
            )
        return cls(failure_injector=injector, **kwargs)

    def call_latency(self, batch_size: int) -> float:
        """Simulated latency in seconds for a batch of ``batch_size`` items."""
        return (self.latency_ms + self.per_item_ms * batch_size) / 1000.0

    def predict(self, inputs: List[Any], timeout: float) -> List[Any]:
        with self._lock:
            self.calls += 1

        failure = None
        if self.failure_injector is not None:
            # Crashes raise FailureInjectionError from here
            failure = self.failure_injector.inject_failure(PREDICT_OPERATION)

        if failure is FailureType.BACKEND_TIMEOUT:
            config = self.failure_injector.failure_configs[PREDICT_OPERATION]
            time.sleep(self.failure_injector.delay_for(config))
            raise BackendTimeoutError(timeout, backend=self.name)

        time.sleep(self.call_latency(len(inputs)))
        outputs = [self.transform(item) for item in inputs]

        if failure is FailureType.OUTPUT_MISMATCH:
            outputs = outputs[:-1]

        with self._lock:
            self.batch_sizes.append(len(inputs))

        logger.debug("Simulated batch served", batch_size=len(inputs))
        return outputs

    def reset(self):
        with self._lock:
            self.batch_sizes.clear()
            self.calls = 0
