"""
Metrics Collection for Dynabatch

In-memory counters, gauges, histograms and timers with summary statistics,
plus the scheduler-specific recorder used by the batching scheduler and its
dispatcher. Nothing here leaves the process; summaries can be exported to
JSON for offline analysis.
"""

import json
import statistics
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class MetricSummary:
    """Summary statistics for a metric."""

    name: str
    count: int
    min_value: float
    max_value: float
    mean: float
    median: float
    std_dev: float
    p95: float
    p99: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "count": self.count,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "mean": self.mean,
            "median": self.median,
            "std_dev": self.std_dev,
            "p95": self.p95,
            "p99": self.p99,
        }


def summarize(name: str, values: List[float]) -> Optional[MetricSummary]:
    """Compute summary statistics for a list of values."""
    if not values:
        return None

    count = len(values)
    sorted_values = sorted(values)
    p95_idx = int(0.95 * count)
    p99_idx = int(0.99 * count)

    return MetricSummary(
        name=name,
        count=count,
        min_value=sorted_values[0],
        max_value=sorted_values[-1],
        mean=statistics.mean(values),
        median=statistics.median(values),
        std_dev=statistics.stdev(values) if count > 1 else 0.0,
        p95=sorted_values[min(p95_idx, count - 1)],
        p99=sorted_values[min(p99_idx, count - 1)],
    )


class MetricsCollector:
    """
    Collects metrics in memory.

    Counters only increase, gauges hold the latest value, histograms and
    timers keep a bounded window of observations.
    """

    def __init__(self, max_points_per_metric: int = 10000):
        self.max_points_per_metric = max_points_per_metric
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = defaultdict(float)
        self.histograms: Dict[str, deque] = defaultdict(
            lambda: deque(maxlen=max_points_per_metric)
        )
        self.timers: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_points_per_metric))

        self._lock = threading.RLock()

    def record_counter(self, name: str, value: int = 1):
        """Record a counter metric (monotonically increasing)."""
        with self._lock:
            self.counters[name] += value

    def record_gauge(self, name: str, value: Union[int, float]):
        """Record a gauge metric (point-in-time value)."""
        with self._lock:
            self.gauges[name] = float(value)

    def record_histogram(self, name: str, value: Union[int, float]):
        """Record a histogram metric (distribution of values)."""
        with self._lock:
            self.histograms[name].append(float(value))

    def record_timer(self, name: str, duration_seconds: float):
        """Record a timer metric (duration measurement)."""
        with self._lock:
            self.timers[name].append(duration_seconds)

    def time_operation(self, name: str):
        """Context manager to time operations."""
        return TimerContext(self, name)

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self.counters.get(name, 0)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self.gauges.get(name, 0.0)

    def get_histogram(self, name: str) -> List[float]:
        with self._lock:
            return list(self.histograms.get(name, ()))

    def get_metric_summary(self, name: str) -> Optional[MetricSummary]:
        """Get summary statistics for a histogram or timer."""
        with self._lock:
            values = list(self.histograms.get(name, ())) or list(self.timers.get(name, ()))
        return summarize(name, values)

    def get_all_summaries(self) -> Dict[str, MetricSummary]:
        """Get summary statistics for all histograms and timers."""
        with self._lock:
            names = list(self.histograms.keys()) + list(self.timers.keys())

        summaries = {}
        for name in names:
            summary = self.get_metric_summary(name)
            if summary:
                summaries[name] = summary
        return summaries

    def snapshot(self) -> Dict[str, Any]:
        """Return counters, gauges and summaries as plain data."""
        with self._lock:
            counters = dict(self.counters)
            gauges = dict(self.gauges)

        return {
            "counters": counters,
            "gauges": gauges,
            "summaries": {name: s.to_dict() for name, s in self.get_all_summaries().items()},
        }

    def export_metrics(self, filepath: str, format: str = "json"):
        """Export a metrics snapshot to a file."""
        export_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "format_version": "1.0",
            **self.snapshot(),
        }

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        if format.lower() == "json":
            with open(filepath, "w") as f:
                json.dump(export_data, f, indent=2)
        else:
            raise ValueError(f"Unsupported export format: {format}")

        logger.info("Metrics exported", filepath=str(filepath), format=format)

    def clear_metrics(self):
        """Clear all collected metrics."""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.timers.clear()

        logger.info("All metrics cleared")


class TimerContext:
    """Context manager for timing operations."""

    def __init__(self, collector: MetricsCollector, name: str):
        self.collector = collector
        self.name = name
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.perf_counter() - self.start_time
            status = "success" if exc_type is None else "error"
            self.collector.record_timer(self.name, duration)
            self.collector.record_timer(f"{self.name}.{status}", duration)


class SchedulerMetrics:
    """Specialized recorder for the batching scheduler."""

    def __init__(self, collector: Optional[MetricsCollector] = None, enabled: bool = True):
        self.collector = collector or MetricsCollector()
        self.enabled = enabled

    def record_submitted(self, pending: int):
        if self.enabled:
            self.collector.record_counter("requests.submitted")
            self.collector.record_gauge("queue.pending", pending)

    def record_rejected(self, pending: int):
        if self.enabled:
            self.collector.record_counter("requests.rejected")
            self.collector.record_gauge("queue.pending", pending)

    def record_batch_formed(self, batch_size: int, trigger: str, wait_ms: float, pending: int):
        if self.enabled:
            self.collector.record_counter("batches.formed")
            self.collector.record_counter(f"batches.trigger.{trigger}")
            self.collector.record_histogram("batch.size", batch_size)
            self.collector.record_histogram("batch.wait_ms", wait_ms)
            self.collector.record_gauge("queue.pending", pending)

    def record_inflight(self, inflight: int):
        if self.enabled:
            self.collector.record_gauge("batches.inflight", inflight)

    def record_batch_completed(self, batch_size: int, duration_seconds: float):
        if self.enabled:
            self.collector.record_counter("batches.completed")
            self.collector.record_counter("requests.completed", batch_size)
            self.collector.record_timer("backend.latency", duration_seconds)
            if duration_seconds > 0:
                self.collector.record_histogram(
                    "backend.throughput_items_per_sec", batch_size / duration_seconds
                )

    def record_batch_failed(self, batch_size: int, duration_seconds: float, error_type: str):
        if self.enabled:
            self.collector.record_counter("batches.failed")
            self.collector.record_counter(f"batches.failed.{error_type}")
            self.collector.record_counter("requests.failed", batch_size)
            self.collector.record_timer("backend.latency", duration_seconds)

    def record_requests_failed(self, count: int, reason: str):
        """Record requests failed outside a backend call (e.g. non-draining stop)."""
        if self.enabled and count:
            self.collector.record_counter("requests.failed", count)
            self.collector.record_counter(f"requests.failed.{reason}", count)

    def record_request_latency(self, queue_time_ms: float, latency_ms: float):
        if self.enabled:
            self.collector.record_histogram("request.queue_time_ms", queue_time_ms)
            self.collector.record_histogram("request.latency_ms", latency_ms)
