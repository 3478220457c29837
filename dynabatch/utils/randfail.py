"""
Seeded failure injection for exercising backend failure handling.

The simulated backend consults an injector before serving each batch so that
crashes, timeouts, slow responses and malformed outputs can be reproduced
deterministically from a seed.
"""

import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..logging import get_logger

logger = get_logger(__name__)


class FailureType(Enum):
    """Types of failures that can be injected."""

    BACKEND_CRASH = "backend_crash"  # Call raises
    BACKEND_TIMEOUT = "backend_timeout"  # Call hangs past its deadline
    SLOW_RESPONSE = "slow_response"  # Call succeeds after an extra delay
    OUTPUT_MISMATCH = "output_mismatch"  # Call returns the wrong number of outputs


@dataclass
class FailureConfig:
    """Configuration for a specific failure type."""

    failure_type: FailureType
    probability: float  # 0.0 to 1.0
    delay_range: Tuple[float, float] = (0.0, 0.0)  # Min/max delay in seconds
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError("Failure probability must be between 0.0 and 1.0")

        low, high = self.delay_range
        if low < 0 or high < low:
            raise ValueError("delay_range must be a non-negative (min, max) pair")


class FailureInjectionError(Exception):
    """Exception raised when failure injection is triggered."""

    def __init__(self, failure_type: FailureType, message: str, metadata: Dict[str, Any] = None):
        self.failure_type = failure_type
        self.metadata = metadata or {}
        super().__init__(message)


class RandomFailureInjector:
    """Seeded random failure injector for reproducible testing."""

    def __init__(self, seed: int = 42):
        self.seed = seed
        self.rng = random.Random(seed)
        self.failure_configs: Dict[str, FailureConfig] = {}
        self.injection_history: List[Dict[str, Any]] = []
        self.enabled = True
        self._lock = threading.Lock()

    def configure_failure(self, operation: str, config: FailureConfig):
        """Configure failure injection for a specific operation."""
        self.failure_configs[operation] = config
        logger.debug(
            "Failure injection configured",
            operation=operation,
            failure_type=config.failure_type.value,
            probability=config.probability,
        )

    def draw(self, operation: str) -> Optional[FailureConfig]:
        """Decide whether ``operation`` fails this time; records the injection if so."""
        if not self.enabled or operation not in self.failure_configs:
            return None

        config = self.failure_configs[operation]
        with self._lock:
            if self.rng.random() >= config.probability:
                return None

            self.injection_history.append(
                {
                    "timestamp": time.time(),
                    "operation": operation,
                    "failure_type": config.failure_type.value,
                    "metadata": config.metadata,
                }
            )

        logger.warning(
            "Failure injected", operation=operation, failure_type=config.failure_type.value
        )
        return config

    def delay_for(self, config: FailureConfig) -> float:
        """Draw a delay from the configured range."""
        with self._lock:
            return self.rng.uniform(*config.delay_range)

    def inject_failure(self, operation: str) -> Optional[FailureType]:
        """Apply a drawn failure: sleep for any delay, raise for a crash.

        Returns the failure type for failures the caller has to act out
        itself (timeouts and output mismatches), or None.
        """
        config = self.draw(operation)
        if config is None:
            return None

        delay = self.delay_for(config)
        if delay > 0 and config.failure_type is not FailureType.BACKEND_TIMEOUT:
            time.sleep(delay)

        if config.failure_type is FailureType.BACKEND_CRASH:
            raise FailureInjectionError(
                config.failure_type, f"Backend crashed during {operation}", config.metadata
            )

        if config.failure_type is FailureType.SLOW_RESPONSE:
            return None

        return config.failure_type

    def reset_history(self):
        """Clear injection history."""
        with self._lock:
            self.injection_history.clear()

    def get_injection_stats(self) -> Dict[str, Any]:
        """Get statistics about failure injections."""
        with self._lock:
            history = list(self.injection_history)

        if not history:
            return {"total_injections": 0}

        failure_counts: Dict[str, int] = {}
        operation_counts: Dict[str, int] = {}

        for record in history:
            failure_type = record["failure_type"]
            operation = record["operation"]

            failure_counts[failure_type] = failure_counts.get(failure_type, 0) + 1
            operation_counts[operation] = operation_counts.get(operation, 0) + 1

        return {
            "total_injections": len(history),
            "failure_type_counts": failure_counts,
            "operation_counts": operation_counts,
        }
