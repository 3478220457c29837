"""
Inference backend interface.

A backend is the opaque model behind the scheduler: one synchronous call
takes a batch of inputs and a timeout and returns the outputs in the same
order, or raises for the whole batch.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List


class InferenceBackend(ABC):
    """Abstract base class for inference backends."""

    name: str = "backend"

    @abstractmethod
    def predict(self, inputs: List[Any], timeout: float) -> List[Any]:
        """Run inference on a batch.

        Args:
            inputs: Request payloads in arrival order
            timeout: Deadline for the call in seconds

        Returns:
            One output per input, in the same order
        """
        pass

    def close(self):
        """Release backend resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CallableBackend(InferenceBackend):
    """Backend wrapping a plain ``fn(inputs) -> outputs`` function."""

    def __init__(self, fn: Callable[[List[Any]], List[Any]], name: str = "callable"):
        self.fn = fn
        self.name = name

    def predict(self, inputs: List[Any], timeout: float) -> List[Any]:
        # Deadline enforcement is left to the dispatcher
        return list(self.fn(inputs))
