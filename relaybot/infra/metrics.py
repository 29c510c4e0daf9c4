"""
In-process metrics for the dispatch pipeline.

Three metric types, keyed by ``name{label=value,...}`` with labels sorted:

- counters: monotonically increasing totals
- gauges: values that go up and down (e.g. dispatches in flight)
- histograms: latency distributions over a bounded window of recent samples

``GET /metrics`` serves ``get_metrics_collector().get_metrics()`` as JSON.
"""
from __future__ import annotations
import time
from collections import deque
from contextlib import contextmanager
from threading import Lock
from typing import Iterator, Optional

from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)

# Recent samples kept per histogram for percentiles; count/sum stay exact
HISTOGRAM_WINDOW = 1024


class Histogram:
    """Latency distribution: exact count and sum, percentiles over the last N samples"""

    __slots__ = ("count", "total", "_window")

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self.count = 0
        self.total = 0.0
        self._window: deque[float] = deque(maxlen=window)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self._window.append(value)

    def snapshot(self) -> dict:
        if not self.count:
            return {"count": 0, "sum": 0.0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}

        recent = sorted(self._window)
        last = len(recent) - 1

        def pct(q: float) -> float:
            return recent[min(int(len(recent) * q), last)]

        return {
            "count": self.count,
            "sum": self.total,
            "min": recent[0],
            "max": recent[-1],
            "avg": self.total / self.count,
            "p50": pct(0.50),
            "p95": pct(0.95),
            "p99": pct(0.99),
        }


def metric_key(name: str, labels: Optional[dict] = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """
    Thread-safe registry of counters, gauges and histograms.

    Updates come from the event loop and, for the file session store,
    from executor threads, so every mutation takes the lock.
    """

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self.histogram_window = histogram_window
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def add_gauge(self, name: str, delta: float, labels: dict | None = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            self._gauges[key] = self._gauges.get(key, 0) + delta

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        with self._lock:
            self._gauges[metric_key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram(self.histogram_window)
            histogram.observe(value)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {k: h.snapshot() for k, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager recording the block's wall time into a histogram"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.elapsed: float | None = None
        self._started: float | None = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self._started
        observe_histogram(self.metric_name, self.elapsed, **self.labels)


class DispatchMetrics:
    """Named metrics emitted by the dispatcher, stores and transports"""

    @staticmethod
    def event_received(kind: str) -> None:
        inc_counter("events_received_total", kind=kind)

    @staticmethod
    def event_handled(kind: str) -> None:
        inc_counter("events_handled_total", kind=kind)

    @staticmethod
    def handler_error(kind: str) -> None:
        inc_counter("handler_errors_total", kind=kind)

    @staticmethod
    def scene_step(scene: str) -> None:
        inc_counter("scene_steps_total", scene=scene)

    @staticmethod
    def session_store_error(operation: str) -> None:
        inc_counter("session_store_errors_total", operation=operation)

    @staticmethod
    def acknowledge_failed(provider: str) -> None:
        inc_counter("acknowledge_failures_total", provider=provider)

    @staticmethod
    def webhook_validation_failed(provider: str) -> None:
        inc_counter("webhook_validation_failures_total", provider=provider)

    @staticmethod
    @contextmanager
    def track_dispatch(kind: str) -> Iterator[Timer]:
        """Time one dispatch cycle and count it as in flight while it runs"""
        labels = {"kind": kind}
        _metrics.add_gauge("dispatches_in_flight", 1, labels)
        try:
            with Timer("dispatch_seconds", **labels) as timer:
                yield timer
        finally:
            _metrics.add_gauge("dispatches_in_flight", -1, labels)
