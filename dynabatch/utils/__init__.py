"""
Utility modules for Dynabatch.
"""

from .randfail import FailureConfig, FailureInjectionError, FailureType, RandomFailureInjector
from .timers import Timer, TimingResult, time_operation

__all__ = [
    "Timer",
    "TimingResult",
    "time_operation",
    "FailureConfig",
    "FailureInjectionError",
    "FailureType",
    "RandomFailureInjector",
]
