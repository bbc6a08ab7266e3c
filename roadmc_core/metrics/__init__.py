"""Metrics module - Client operation metrics."""

from roadmc_core.metrics.collector import ClientMetrics, MetricsCollector, Timer

__all__ = [
    "MetricsCollector",
    "ClientMetrics",
    "Timer",
]
