"""
Metrics collection and Prometheus-compatible exposition.

Tracks command, hub and notification counters and the hub event queue
depth for monitoring.
"""

from __future__ import annotations

import time
from collections import defaultdict

PREFIX = "scriber_"


class MetricsCollector:
    """
    Counters and gauges with Prometheus text format export.

    Names are given without the prefix; it is added on write and read.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        self._counters[f"{PREFIX}{name}"] += value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""
        self._gauges[f"{PREFIX}{name}"] = value

    def get(self, name: str) -> int | float:
        """Get a metric value."""
        full = f"{PREFIX}{name}"
        if full in self._gauges:
            return self._gauges[full]
        return self._counters.get(full, 0)

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        for name, value in sorted(self._counters.items()):
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")
        for name, value in sorted(self._gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"
