"""
Serenity Metrics — in-process counters, gauges and duration samples.

No external dependencies. Read it back through snapshot() for /health.

Usage:
    from serenity.core.metrics import metrics

    metrics.inc("cycles.settled", labels={"status": "settled-ok"})
    metrics.observe("cycles.duration_ms", 64210.0)
    metrics.gauge_set("cycles.in_flight", 1)
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """Counters, gauges and bounded histograms keyed by name + labels."""

    MAX_SAMPLES = 500

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._samples: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.MAX_SAMPLES)
        )
        self._started_at = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def gauge_set(self, name: str, value: float, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] = value

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        self._samples[self._key(name, labels)].append(value)

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def gauge(self, name: str, labels: dict | None = None) -> float | None:
        return self._gauges.get(self._key(name, labels))

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._samples.clear()

    def snapshot(self) -> dict:
        """JSON-ready view: counters, gauges and per-histogram summaries."""
        histograms = {}
        for key, samples in self._samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    @staticmethod
    def _key(name: str, labels: dict | None) -> str:
        # "cycles.settled{status=settled-ok}"
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton
metrics = MetricsCollector()
