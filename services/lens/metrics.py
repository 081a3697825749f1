"""
In-process latency / quality metrics for the recommendation pipeline.

A bounded ring buffer (oldest sample overwritten) guarded by a lock, so it is
safe to record from the event loop and to read from a health probe thread.
Samples slower than the endpoint's p95 target are logged at WARNING.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

RECOMMEND_ENDPOINT = "/recommend"
DEFAULT_TARGET_MS = 1000


@dataclass
class MetricSample:
    trace_id: str
    endpoint: str
    total_ms: int
    stage_timings: dict[str, int] = field(default_factory=dict)
    degraded: bool = False
    cache_hit: bool = False
    slate_overlap: float = 0.0


@dataclass
class MetricSummary:
    count: int
    p50: float
    p95: float
    p99: float
    target: int
    meeting_target: float  # percent of samples within target
    degraded_rate: float
    cache_hit_rate: float


class PipelineMetrics:
    def __init__(
        self,
        capacity: int = 1000,
        p95_targets: dict[str, int] | None = None,
    ) -> None:
        self._samples: deque[MetricSample] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._targets = dict(p95_targets or {})

    def target_for(self, endpoint: str) -> int:
        return self._targets.get(endpoint, DEFAULT_TARGET_MS)

    def record(self, sample: MetricSample) -> None:
        with self._lock:
            self._samples.append(sample)

        target = self.target_for(sample.endpoint)
        if sample.total_ms > target:
            logger.warning(
                "[%s] %s took %dms (target: %dms) stages=%s",
                sample.trace_id,
                sample.endpoint,
                sample.total_ms,
                target,
                sample.stage_timings,
            )

    def samples(self, endpoint: str | None = None) -> list[MetricSample]:
        with self._lock:
            snapshot = list(self._samples)
        if endpoint is None:
            return snapshot
        return [s for s in snapshot if s.endpoint == endpoint]

    def summary(self, endpoint: str) -> MetricSummary | None:
        samples = self.samples(endpoint)
        if not samples:
            return None

        latencies = np.sort(np.asarray([s.total_ms for s in samples], dtype=float))
        n = len(latencies)

        def at(q: float) -> float:
            return float(latencies[min(int(n * q), n - 1)])

        target = self.target_for(endpoint)
        return MetricSummary(
            count=n,
            p50=at(0.50),
            p95=at(0.95),
            p99=at(0.99),
            target=target,
            meeting_target=float(np.mean(latencies <= target) * 100),
            degraded_rate=sum(s.degraded for s in samples) / n,
            cache_hit_rate=sum(s.cache_hit for s in samples) / n,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
