"""
Per-endpoint dispatch counters and latency statistics.
"""

import asyncio
from collections import Counter
from typing import Any, Dict, Optional

from panelforge.core.exceptions import UpstreamErrorKind


class DispatchMetrics:
    """Attempt, outcome and latency counters for one endpoint kind."""

    def __init__(self, name: str):
        self.name = name
        self.attempts = 0
        self.successes = 0
        self.short_circuits = 0
        self.failures: Counter = Counter()
        self._latency_total = 0.0
        self._latency_max = 0.0
        self._latency_count = 0
        self._lock = asyncio.Lock()

    async def record_success(self, latency: float) -> None:
        async with self._lock:
            self.attempts += 1
            self.successes += 1
            self._observe(latency)

    async def record_failure(self, kind: UpstreamErrorKind, latency: Optional[float] = None) -> None:
        async with self._lock:
            self.attempts += 1
            self.failures[kind.value] += 1
            if latency is not None:
                self._observe(latency)

    async def record_short_circuit(self) -> None:
        async with self._lock:
            self.short_circuits += 1

    def _observe(self, latency: float) -> None:
        self._latency_total += latency
        self._latency_count += 1
        self._latency_max = max(self._latency_max, latency)

    @property
    def mean_latency(self) -> float:
        if not self._latency_count:
            return 0.0
        return self._latency_total / self._latency_count

    def snapshot(self) -> Dict[str, Any]:
        return {
            "endpoint": self.name,
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": dict(self.failures),
            "short_circuits": self.short_circuits,
            "mean_latency_seconds": round(self.mean_latency, 4),
            "max_latency_seconds": round(self._latency_max, 4),
        }
