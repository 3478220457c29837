"""Shared test fixtures for dynabatch."""

import threading

import pytest
from dynabatch.backends.base import InferenceBackend
from dynabatch.batching.scheduler import BatchingScheduler
from dynabatch.config import SchedulerConfig, get_config, reset_config

SCHEDULER_ENV = [
    "MAX_BATCH_SIZE",
    "PREFERRED_BATCH_SIZE",
    "MAX_QUEUE_DELAY_MS",
    "BACKLOG_LIMIT",
    "MAX_INFLIGHT_BATCHES",
    "BACKEND_TIMEOUT_S",
    "DYNABATCH_BACKEND_KIND",
    "DYNABATCH_BACKEND_URL",
    "DYNABATCH_BACKEND_FAILURE_RATE",
]


class RecordingBackend(InferenceBackend):
    """Test backend that records batch sizes and can fail or block on demand."""

    name = "recording"

    def __init__(self, fail_when=None, gate: threading.Event = None):
        self.fail_when = fail_when
        self.gate = gate
        self.started = threading.Event()
        self.batches = []
        self._lock = threading.Lock()

    @property
    def batch_sizes(self):
        with self._lock:
            return [len(b) for b in self.batches]

    def predict(self, inputs, timeout):
        with self._lock:
            self.batches.append(list(inputs))
            call_number = len(self.batches)
        self.started.set()

        if self.gate is not None:
            self.gate.wait(5.0)

        if self.fail_when is not None and self.fail_when(call_number, inputs):
            raise RuntimeError(f"model crashed on call {call_number}")

        return [{"echo": item} for item in inputs]


@pytest.fixture(autouse=True)
def _reset_global_config(monkeypatch):
    """Reset global config and clear scheduler environment for all tests."""
    for key in SCHEDULER_ENV:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    """Return the default DynabatchConfig."""
    return get_config()


@pytest.fixture
def backend():
    """Return a recording backend that always succeeds."""
    return RecordingBackend()


@pytest.fixture
def make_backend():
    """Factory for recording backends with failure or gating behaviour."""
    return RecordingBackend


@pytest.fixture
def make_scheduler():
    """Factory building started schedulers that are stopped after the test."""
    schedulers = []

    def factory(backend, start=True, **overrides):
        settings = {
            "max_batch_size": 4,
            "preferred_batch_size": 4,
            "max_queue_delay_ms": 50.0,
            "backlog_limit": 100,
            "max_inflight_batches": 4,
            "backend_timeout_s": 5.0,
        }
        settings.update(overrides)
        scheduler = BatchingScheduler(backend, config=SchedulerConfig(**settings))
        schedulers.append(scheduler)
        if start:
            scheduler.start()
        return scheduler

    yield factory

    for scheduler in schedulers:
        gate = getattr(scheduler.backend, "gate", None)
        if gate is not None:
            gate.set()
        scheduler.stop(drain=False, timeout=5.0)
