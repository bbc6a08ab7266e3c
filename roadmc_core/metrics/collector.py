"""RoadMC Metrics Collector - Client Operation Metrics.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class ClientMetrics:
    """Client metrics container.

    Attributes:
        hits: Keys found by reads
        misses: Keys not found by reads
        stores: Successful writes
        store_failures: Writes answered NOT_STORED/EXISTS/NOT_FOUND
        deletes: Successful deletes
        counter_ops: incr/decr operations
        retries: Reads repeated on a fallback node
        errors: Raised errors by class name
        node_failures: Node degraded transitions
        node_recoveries: Node recovered transitions
        latency_avg_ms: Average latency
        latency_p99_ms: P99 latency
        ops_per_second: Operations per second
    """

    hits: int = 0
    misses: int = 0
    stores: int = 0
    store_failures: int = 0
    deletes: int = 0
    counter_ops: int = 0
    retries: int = 0
    errors: Dict[str, int] = field(default_factory=dict)
    node_failures: int = 0
    node_recoveries: int = 0
    latency_avg_ms: float = 0.0
    latency_p99_ms: float = 0.0
    ops_per_second: float = 0.0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def total_errors(self) -> int:
        return sum(self.errors.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Metrics dictionary
        """
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "stores": self.stores,
            "store_failures": self.store_failures,
            "deletes": self.deletes,
            "counter_ops": self.counter_ops,
            "retries": self.retries,
            "errors": dict(self.errors),
            "node_failures": self.node_failures,
            "node_recoveries": self.node_recoveries,
            "latency_avg_ms": self.latency_avg_ms,
            "latency_p99_ms": self.latency_p99_ms,
            "ops_per_second": self.ops_per_second,
        }


class MetricsCollector:
    """Collects and aggregates client metrics.

    Features:
    - Operation counters
    - Latency window (average and p99)
    - Throughput calculation
    - Prometheus export

    Example:
        collector = MetricsCollector()
        collector.record_hit()
        collector.record_latency(5.2)

        metrics = collector.get_metrics()
        print(f"Hit rate: {metrics.hit_rate:.2%}")
    """

    def __init__(self, window_seconds: int = 60, latency_samples: int = 10000):
        """Initialize collector.

        Args:
            window_seconds: Window for rate calculations
            latency_samples: Latencies kept for percentiles
        """
        self.window_seconds = window_seconds

        self._hits = 0
        self._misses = 0
        self._stores = 0
        self._store_failures = 0
        self._deletes = 0
        self._counter_ops = 0
        self._retries = 0
        self._errors: Dict[str, int] = {}
        self._node_failures = 0
        self._node_recoveries = 0

        self._ops_window: Deque[float] = deque()
        self._latencies: Deque[float] = deque(maxlen=latency_samples)

        self._lock = threading.Lock()
        self._exporters: List[Callable[[ClientMetrics], None]] = []

    def record_hit(self, count: int = 1) -> None:
        with self._lock:
            self._hits += count
            self._record_op()

    def record_miss(self, count: int = 1) -> None:
        with self._lock:
            self._misses += count
            self._record_op()

    def record_store(self, success: bool) -> None:
        with self._lock:
            if success:
                self._stores += 1
            else:
                self._store_failures += 1
            self._record_op()

    def record_delete(self) -> None:
        with self._lock:
            self._deletes += 1
            self._record_op()

    def record_counter(self) -> None:
        with self._lock:
            self._counter_ops += 1
            self._record_op()

    def record_retry(self) -> None:
        with self._lock:
            self._retries += 1

    def record_error(self, error: BaseException) -> None:
        name = type(error).__name__
        with self._lock:
            self._errors[name] = self._errors.get(name, 0) + 1

    def record_node_failure(self, node: Any = None) -> None:
        with self._lock:
            self._node_failures += 1

    def record_node_recovery(self, node: Any = None) -> None:
        with self._lock:
            self._node_recoveries += 1

    def record_latency(self, ms: float) -> None:
        """Record operation latency.

        Args:
            ms: Latency in milliseconds
        """
        with self._lock:
            self._latencies.append(ms)

    def _record_op(self) -> None:
        now = time.time()
        self._ops_window.append(now)

        cutoff = now - self.window_seconds
        while self._ops_window and self._ops_window[0] < cutoff:
            self._ops_window.popleft()

    def _calculate_ops_per_second(self) -> float:
        if not self._ops_window:
            return 0.0

        now = time.time()
        cutoff = now - self.window_seconds
        while self._ops_window and self._ops_window[0] < cutoff:
            self._ops_window.popleft()

        if not self._ops_window:
            return 0.0

        elapsed = now - self._ops_window[0]
        if elapsed == 0:
            return 0.0
        return len(self._ops_window) / elapsed

    def _calculate_latency_p99(self) -> float:
        if not self._latencies:
            return 0.0
        ordered = sorted(self._latencies)
        idx = int(len(ordered) * 0.99)
        return ordered[min(idx, len(ordered) - 1)]

    def get_metrics(self) -> ClientMetrics:
        """Get current metrics.

        Returns:
            ClientMetrics instance
        """
        with self._lock:
            latencies = self._latencies
            return ClientMetrics(
                hits=self._hits,
                misses=self._misses,
                stores=self._stores,
                store_failures=self._store_failures,
                deletes=self._deletes,
                counter_ops=self._counter_ops,
                retries=self._retries,
                errors=dict(self._errors),
                node_failures=self._node_failures,
                node_recoveries=self._node_recoveries,
                latency_avg_ms=sum(latencies) / len(latencies) if latencies else 0.0,
                latency_p99_ms=self._calculate_latency_p99(),
                ops_per_second=self._calculate_ops_per_second(),
            )

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._stores = 0
            self._store_failures = 0
            self._deletes = 0
            self._counter_ops = 0
            self._retries = 0
            self._errors.clear()
            self._node_failures = 0
            self._node_recoveries = 0
            self._ops_window.clear()
            self._latencies.clear()

    def add_exporter(self, exporter: Callable[[ClientMetrics], None]) -> None:
        """Add metrics exporter.

        Args:
            exporter: Callback to receive metrics
        """
        self._exporters.append(exporter)

    def export(self) -> None:
        """Export metrics to all exporters."""
        metrics = self.get_metrics()
        for exporter in self._exporters:
            try:
                exporter(metrics)
            except Exception as e:
                logger.error(f"Exporter error: {e}")

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus format.

        Returns:
            Prometheus-formatted metrics
        """
        metrics = self.get_metrics()
        lines = [
            "# HELP roadmc_hits_total Keys found by reads",
            "# TYPE roadmc_hits_total counter",
            f"roadmc_hits_total {metrics.hits}",
            "",
            "# HELP roadmc_misses_total Keys not found by reads",
            "# TYPE roadmc_misses_total counter",
            f"roadmc_misses_total {metrics.misses}",
            "",
            "# HELP roadmc_stores_total Successful writes",
            "# TYPE roadmc_stores_total counter",
            f"roadmc_stores_total {metrics.stores}",
            "",
            "# HELP roadmc_node_failures_total Node degraded transitions",
            "# TYPE roadmc_node_failures_total counter",
            f"roadmc_node_failures_total {metrics.node_failures}",
            "",
            "# HELP roadmc_errors_total Raised errors",
            "# TYPE roadmc_errors_total counter",
        ]
        for name, count in sorted(metrics.errors.items()):
            lines.append(f'roadmc_errors_total{{type="{name}"}} {count}')
        lines.extend([
            "",
            "# HELP roadmc_latency_p99_ms P99 latency",
            "# TYPE roadmc_latency_p99_ms gauge",
            f"roadmc_latency_p99_ms {metrics.latency_p99_ms:.2f}",
        ])
        return "\n".join(lines)

    def __repr__(self) -> str:
        metrics = self.get_metrics()
        return f"MetricsCollector(hits={metrics.hits}, hit_rate={metrics.hit_rate:.2%})"


class Timer:
    """Context manager for timing operations."""

    def __init__(self, collector: MetricsCollector):
        self._collector = collector
        self._start: float = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        elapsed_ms = (time.perf_counter() - self._start) * 1000
        self._collector.record_latency(elapsed_ms)


__all__ = ["MetricsCollector", "ClientMetrics", "Timer"]
