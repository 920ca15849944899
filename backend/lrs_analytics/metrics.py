"""
Metrics Collector
==================
In-memory telemetry sink for the computation pipeline.
Tracks cache hit ratio, computation latency, LRS latency and error categories,
circuit breaker transitions and graceful-degradation events.

One collector is created at startup and passed explicitly to every component
that reports (LRS clients, circuit breakers, cache, fallback, computation service).
"""

import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Dict


class Counter:
    """Monotonic count, optionally split by label."""
    def __init__(self, name: str):
        self.name = name
        self._by_label: Dict[str, int] = defaultdict(int)

    def inc(self, label: str = "__total__", amount: int = 1):
        self._by_label[label] += amount

    @property
    def value(self) -> int:
        """Sum over every label."""
        return sum(self._by_label.values())

    def get(self, label: str) -> int:
        return self._by_label.get(label, 0)

    def to_dict(self) -> dict:
        return {"name": self.name, "total": self.value, "by_label": dict(self._by_label)}


class Histogram:
    """Latency samples in a bounded window, plus per-label observation counts."""
    def __init__(self, name: str, max_samples: int = 500):
        self.name = name
        self._window: deque = deque(maxlen=max_samples)
        self._observations: Dict[str, int] = defaultdict(int)

    def observe(self, value: float, label: str = "__total__"):
        self._window.append(value)
        self._observations[label] += 1

    @property
    def count(self) -> int:
        return len(self._window)

    @property
    def avg(self) -> float:
        return sum(self._window) / len(self._window) if self._window else 0.0

    def percentile(self, pct: int) -> float:
        """Nearest-rank percentile of the current window."""
        if not self._window:
            return 0.0
        ordered = sorted(self._window)
        return ordered[min(int(len(ordered) * pct / 100), len(ordered) - 1)]

    @property
    def p95(self) -> float:
        return self.percentile(95)

    def to_dict(self) -> dict:
        summary = {"name": self.name, "count": self.count, "avg": round(self.avg, 3)}
        for pct in (50, 95, 99):
            summary[f"p{pct}"] = round(self.percentile(pct), 3)
        summary["by_label"] = dict(self._observations)
        return summary


class MetricsCollector:
    """
    Central metrics collection for the analytics service.

    Metrics tracked:
    - cache_hits_total              (Counter)   by metric id
    - cache_misses_total            (Counter)   by metric id
    - metric_computation_seconds    (Histogram) by metric id, every outcome
    - metric_computation_errors     (Counter)   by metric id
    - lrs_query_seconds             (Histogram) by instance id
    - lrs_errors_total              (Counter)   by category
    - cache_operation_seconds       (Histogram) by operation
    - cache_evictions_total         (Counter)
    - graceful_degradation_total    (Counter)   by metric id:strategy
    - circuit_breaker_transitions   (Counter)   by service:from->to
    """

    def __init__(self, buffer_size: int = 1000):
        self._start_time = time.monotonic()

        # Counters
        self.cache_hits = Counter("cache_hits_total")
        self.cache_misses = Counter("cache_misses_total")
        self.computation_errors = Counter("metric_computation_errors_total")
        self.lrs_errors = Counter("lrs_errors_total")
        self.cache_evictions = Counter("cache_evictions_total")
        self.graceful_degradations = Counter("graceful_degradation_total")
        self.circuit_transitions = Counter("circuit_breaker_transitions_total")

        # Histograms
        self.computation_latency = Histogram("metric_computation_seconds", buffer_size)
        self.lrs_latency = Histogram("lrs_query_seconds", buffer_size)
        self.cache_latency = Histogram("cache_operation_seconds", buffer_size)

        # Recent degradations ring buffer for the admin view
        self._recent_degradations: deque = deque(maxlen=50)

    def record_cache_hit(self, metric_id: str):
        self.cache_hits.inc(metric_id)

    def record_cache_miss(self, metric_id: str):
        self.cache_misses.inc(metric_id)

    def record_metric_computation(self, metric_id: str, duration_s: float):
        self.computation_latency.observe(duration_s, metric_id)

    def record_computation_error(self, metric_id: str):
        self.computation_errors.inc(metric_id)

    def record_lrs_query(self, instance_id: str, duration_s: float):
        self.lrs_latency.observe(duration_s, instance_id)

    def record_lrs_error(self, category: str):
        self.lrs_errors.inc(category)

    def record_cache_operation(self, operation: str, duration_s: float):
        self.cache_latency.observe(duration_s, operation)

    def record_cache_eviction(self, count: int = 1):
        self.cache_evictions.inc(amount=count)

    def record_graceful_degradation(self, metric_id: str, strategy: str):
        """strategy: cache_fallback | default_value"""
        self.graceful_degradations.inc(f"{metric_id}:{strategy}")
        self._recent_degradations.append({
            "metric_id": metric_id,
            "strategy": strategy,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def record_circuit_transition(self, service: str, from_state: str, to_state: str):
        self.circuit_transitions.inc(f"{service}:{from_state}->{to_state}")

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    @property
    def cache_hit_ratio(self) -> float:
        lookups = self.cache_hits.value + self.cache_misses.value
        if lookups == 0:
            return 0.0
        return round(self.cache_hits.value / lookups, 4)

    def summary(self) -> Dict[str, Any]:
        """Full metrics summary for the admin endpoint."""
        return {
            "uptime_seconds": round(self.uptime_seconds, 1),
            "cache_hit_ratio": self.cache_hit_ratio,
            "cache_hits": self.cache_hits.to_dict(),
            "cache_misses": self.cache_misses.to_dict(),
            "computation_latency": self.computation_latency.to_dict(),
            "computation_errors": self.computation_errors.to_dict(),
            "lrs_latency": self.lrs_latency.to_dict(),
            "lrs_errors": self.lrs_errors.to_dict(),
            "cache_latency": self.cache_latency.to_dict(),
            "cache_evictions": self.cache_evictions.to_dict(),
            "graceful_degradations": self.graceful_degradations.to_dict(),
            "circuit_transitions": self.circuit_transitions.to_dict(),
            "recent_degradations": list(self._recent_degradations)[-10:],
        }

    def health_summary(self) -> Dict[str, Any]:
        """Compact summary for the health endpoint."""
        computations = self.computation_latency.count
        return {
            "uptime_s": round(self.uptime_seconds, 0),
            "computations": computations,
            "cache_hit_ratio": self.cache_hit_ratio,
            "avg_computation_s": round(self.computation_latency.avg, 4),
            "p95_computation_s": round(self.computation_latency.p95, 4),
            "error_rate": round(self.computation_errors.value / max(computations, 1), 4),
        }
