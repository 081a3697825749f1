"""Tests for services.lens.metrics (ring buffer + percentile summary)."""

import logging

import pytest

from services.lens.metrics import (
    DEFAULT_TARGET_MS,
    RECOMMEND_ENDPOINT,
    MetricSample,
    PipelineMetrics,
)


def _sample(total_ms: int, **overrides) -> MetricSample:
    data = {"trace_id": "t", "endpoint": RECOMMEND_ENDPOINT, "total_ms": total_ms}
    data.update(overrides)
    return MetricSample(**data)


class TestPipelineMetrics:
    def test_ring_buffer_drops_oldest(self):
        metrics = PipelineMetrics(capacity=3)
        for ms in (10, 20, 30, 40):
            metrics.record(_sample(ms))

        assert len(metrics) == 3
        assert [s.total_ms for s in metrics.samples()] == [20, 30, 40]

    def test_summary_percentiles(self):
        metrics = PipelineMetrics(capacity=200, p95_targets={RECOMMEND_ENDPOINT: 300})
        for ms in range(1, 101):
            metrics.record(_sample(ms * 5))

        summary = metrics.summary(RECOMMEND_ENDPOINT)

        assert summary.count == 100
        assert summary.p50 == 255.0
        assert summary.p95 == 480.0
        assert summary.p99 == 500.0
        assert summary.target == 300
        assert summary.meeting_target == pytest.approx(60.0)

    def test_rates(self):
        metrics = PipelineMetrics()
        metrics.record(_sample(10, degraded=True))
        metrics.record(_sample(10, cache_hit=True))
        metrics.record(_sample(10))
        metrics.record(_sample(10, cache_hit=True))

        summary = metrics.summary(RECOMMEND_ENDPOINT)

        assert summary.degraded_rate == pytest.approx(0.25)
        assert summary.cache_hit_rate == pytest.approx(0.5)

    def test_summary_filters_by_endpoint(self):
        metrics = PipelineMetrics()
        metrics.record(_sample(10))
        metrics.record(_sample(9999, endpoint="/other"))

        assert metrics.summary(RECOMMEND_ENDPOINT).count == 1
        assert metrics.summary("/missing") is None

    def test_default_target(self):
        assert PipelineMetrics().target_for("/anything") == DEFAULT_TARGET_MS

    def test_slow_sample_logs_warning(self, caplog):
        metrics = PipelineMetrics(p95_targets={RECOMMEND_ENDPOINT: 100})

        with caplog.at_level(logging.WARNING, logger="services.lens.metrics"):
            metrics.record(_sample(50))
            metrics.record(_sample(250, trace_id="slow-one"))

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "slow-one" in warnings[0].getMessage()
