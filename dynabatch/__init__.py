"""
Dynabatch - dynamic batching for model inference.

Callers submit single inference requests; the scheduler groups them into
batches under size and latency constraints, dispatches each batch to an
inference backend as one call and resolves exactly one result per request.
"""

from .backends import CallableBackend, HttpBackend, InferenceBackend, SimulatedBackend
from .batching import BatchingScheduler, BatchPolicy
from .config import DynabatchConfig, SchedulerConfig
from .errors import (
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    DynabatchError,
    QueueFullError,
    SchedulerClosedError,
)
from .types import Batch, BatchTrigger, InferenceRequest, InferenceResult, RequestState

__version__ = "0.1.0"

__all__ = [
    "BatchingScheduler",
    "BatchPolicy",
    "DynabatchConfig",
    "SchedulerConfig",
    "InferenceBackend",
    "CallableBackend",
    "SimulatedBackend",
    "HttpBackend",
    "InferenceRequest",
    "InferenceResult",
    "Batch",
    "BatchTrigger",
    "RequestState",
    "DynabatchError",
    "QueueFullError",
    "BackendError",
    "BackendTimeoutError",
    "SchedulerClosedError",
    "ConfigurationError",
]
