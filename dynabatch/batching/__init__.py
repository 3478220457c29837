"""
Batching System for Dynabatch

This package provides the dynamic batching scheduler, its batch formation
policy and the dispatcher that sends formed batches to an inference backend.
"""

from .dispatcher import BatchDispatcher
from .policy import BatchPolicy, plan_batches
from .scheduler import BatchingScheduler

__all__ = [
    "BatchingScheduler",
    "BatchDispatcher",
    "BatchPolicy",
    "plan_batches",
]
