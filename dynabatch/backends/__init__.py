"""
Inference backends for Dynabatch

This package provides the backend interface the scheduler dispatches batches
to, together with a simulated backend and an HTTP model-server client.
"""

from typing import Optional

from ..config import DynabatchConfig, get_config
from ..errors import ConfigurationError
from .base import CallableBackend, InferenceBackend
from .http import HttpBackend
from .simulated import SimulatedBackend


def create_backend(config: Optional[DynabatchConfig] = None) -> InferenceBackend:
    """Build the backend selected by ``config.backend.kind``."""
    config = config or get_config()
    backend_config = config.backend

    if backend_config.kind == "simulated":
        return SimulatedBackend.with_failure_rate(
            backend_config.failure_rate,
            seed=backend_config.seed,
            latency_ms=backend_config.latency_ms,
            per_item_ms=backend_config.per_item_ms,
        )

    if backend_config.kind == "http":
        if not backend_config.url:
            raise ConfigurationError("backend.url", None, "a model server URL")
        return HttpBackend(backend_config.url, timeout=config.scheduler.backend_timeout_s)

    raise ConfigurationError("backend.kind", backend_config.kind, "simulated or http")


__all__ = [
    "InferenceBackend",
    "CallableBackend",
    "SimulatedBackend",
    "HttpBackend",
    "create_backend",
]
