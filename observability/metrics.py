"""
observability/metrics.py — Fire-and-forget metrics sink

Counters and latency observations for the turn pipeline, resilience layer
and tools. Recording never raises: a broken sink must not change the outcome
of a turn, so every failure is logged at debug level and dropped.

Usage:
    from observability.metrics import metrics

    metrics.incr("router.intent", intent="weather", method="guard")
    metrics.observe("tool.latency_ms", 412.0, tool="weather")
    metrics.snapshot()   # → {"counters": {...}, "observations": {...}}
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

from observability.logger import get_logger

log = get_logger(__name__)

# Observations kept per series before the oldest are dropped
_MAX_SAMPLES = 512


def _series_key(name: str, labels: dict[str, Any]) -> str:
    if not labels:
        return name
    parts = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}{{{parts}}}"


class MetricsSink:
    """In-process counters and latency samples. Safe to call from any task."""

    def __init__(self, max_samples: int = _MAX_SAMPLES):
        self._counters: dict[str, float] = defaultdict(float)
        self._samples: dict[str, list[float]] = defaultdict(list)
        self._max_samples = max_samples
        self._lock = threading.Lock()

    def incr(self, name: str, value: float = 1.0, **labels: Any) -> None:
        try:
            key = _series_key(name, labels)
            with self._lock:
                self._counters[key] += value
        except Exception as e:
            log.debug("metrics.incr_failed", metric=name, error=str(e))

    def observe(self, name: str, value_ms: float, **labels: Any) -> None:
        try:
            key = _series_key(name, labels)
            with self._lock:
                samples = self._samples[key]
                samples.append(float(value_ms))
                if len(samples) > self._max_samples:
                    del samples[: len(samples) - self._max_samples]
        except Exception as e:
            log.debug("metrics.observe_failed", metric=name, error=str(e))

    def counter(self, name: str, **labels: Any) -> float:
        with self._lock:
            return self._counters.get(_series_key(name, labels), 0.0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            observations = {
                key: {
                    "count": len(vals),
                    "avg": round(sum(vals) / len(vals), 2) if vals else 0.0,
                    "max": max(vals) if vals else 0.0,
                }
                for key, vals in self._samples.items()
            }
            return {"counters": dict(self._counters), "observations": observations}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._samples.clear()


# Process-wide sink
metrics = MetricsSink()
