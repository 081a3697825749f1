"""
Tests for services.lens.runtime wiring.

Uses a Settings instance with no database, graph or reranker configured, so
nothing here opens a network connection.
"""

import pytest
from pydantic import ValidationError

from services.lens.cache.search_cache import InMemoryCacheStore
from services.lens.config import Settings
from services.lens.runtime import build_runtime, lens_runtime
from services.lens.slates.composer import DEFAULT_POLICY, EXPLORATION_POLICY


class TestSettings:
    def test_unknown_slate_policy_rejected(self):
        with pytest.raises(ValidationError):
            _offline_settings(slate_policy="greedy")

    def test_p95_target_fits_request_budget(self):
        cfg = _offline_settings()
        assert cfg.recommend_p95_target_ms <= cfg.request_timeout_s * 1000
        assert cfg.recommend_p95_target_ms >= 1000


def _offline_settings(**overrides) -> Settings:
    data = {
        "database_url": "",
        "neo4j_uri": "",
        "neo4j_password": "",
        "reranker_url": "",
        "sentry_dsn": "",
    }
    data.update(overrides)
    return Settings(**data)


@pytest.mark.asyncio
class TestBuildRuntime:
    async def test_offline_fallbacks(self):
        runtime = await build_runtime(_offline_settings())
        try:
            assert isinstance(runtime.cache._store, InMemoryCacheStore)
            assert runtime.graph.configured is False
            assert runtime.retriever._reranker is None
            assert runtime.pipeline._composer.policy.name == "balanced"
        finally:
            await runtime.close()

    async def test_policy_and_targets_from_settings(self):
        cfg = _offline_settings(recommend_p95_target_ms=450, metrics_capacity=5)
        runtime = await build_runtime(cfg, policy=EXPLORATION_POLICY)
        try:
            assert runtime.pipeline._composer.policy is EXPLORATION_POLICY
            assert runtime.metrics.target_for("/recommend") == 450
        finally:
            await runtime.close()

    async def test_slate_policy_from_settings(self):
        runtime = await build_runtime(_offline_settings(slate_policy="80safe-20novel"))
        try:
            assert runtime.pipeline._composer.policy is EXPLORATION_POLICY
        finally:
            await runtime.close()

    async def test_explicit_policy_overrides_settings(self):
        cfg = _offline_settings(slate_policy="80safe-20novel")
        runtime = await build_runtime(cfg, policy=DEFAULT_POLICY)
        try:
            assert runtime.pipeline._composer.policy is DEFAULT_POLICY
        finally:
            await runtime.close()

    async def test_reranker_only_when_url_set(self):
        runtime = await build_runtime(_offline_settings(reranker_url="http://reranker.test/score"))
        try:
            assert runtime.retriever._reranker is not None
        finally:
            await runtime.close()

    async def test_context_manager_closes(self):
        async with lens_runtime(_offline_settings()) as runtime:
            assert runtime.pipeline is not None
        assert runtime._closers == []
