"""
Shared test fixtures for the CityLens recommender test suite.

Provides:
- fake search backends, reranker and graph store (no external services)
- factory functions for events, backend hits, scored items and intentions
- a fully wired pipeline over the fakes with an in-memory search cache
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

# Ensure test env vars before any app imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("NEO4J_PASSWORD", "")
os.environ.setdefault("RERANKER_URL", "")

from services.lens.cache.search_cache import InMemoryCacheStore, SearchCache  # noqa: E402
from services.lens.graph.enrichment import GraphEnrichment  # noqa: E402
from services.lens.graph.store import (  # noqa: E402
    FriendSignal,
    NoveltyCounts,
    SimilarItems,
    SocialHeatCounts,
)
from services.lens.intention import build_intention  # noqa: E402
from services.lens.metrics import RECOMMEND_ENDPOINT, PipelineMetrics  # noqa: E402
from services.lens.models import (  # noqa: E402
    BackendHit,
    CandidateSource,
    EventFeatures,
    ScoreComponent,
    ScoredItem,
)
from services.lens.pipeline import RecommendationPipeline  # noqa: E402
from services.lens.search.retriever import HybridRetriever  # noqa: E402

NOW = datetime(2026, 6, 12, 18, 0, tzinfo=timezone.utc)

# Greenwich Village, ~2 km from the New York centre point
NEAR_LAT, NEAR_LON = 40.7291, -73.9965


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def make_event(**overrides: Any) -> EventFeatures:
    data: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "title": "Rooftop DJ Night",
        "description": "House and disco until late",
        "category": "MUSIC",
        "start_time": NOW + timedelta(minutes=60),
        "price_min": 25.0,
        "venue_name": "The Roof",
        "city": "New York",
        "lat": NEAR_LAT,
        "lon": NEAR_LON,
        "tags": ["music", "nightlife"],
    }
    data.update(overrides)
    return EventFeatures(**data)


def make_hit(event_id: str | None = None, score: float = 0.5, **event_overrides: Any) -> BackendHit:
    event = make_event(id=event_id or str(uuid.uuid4()), **event_overrides)
    return BackendHit(id=event.id, score=score, features=event)


def make_intention(**overrides: Any):
    """Intention at NOW in New York; token overrides go straight through."""
    city = overrides.pop("city", "New York")
    user_id = overrides.pop("user_id", None)
    session_id = overrides.pop("session_id", None)
    now = overrides.pop("now", NOW)
    return build_intention(
        city=city,
        now=now,
        overrides=overrides or None,
        user_id=user_id,
        session_id=session_id,
    )


def make_scored_item(
    item_id: str | None = None,
    fit: float = 0.5,
    *,
    novelty: float = 0.5,
    distance_km: float | None = 1.0,
    distance_value: float = 0.7,
    budget_value: float = 1.0,
    **event_overrides: Any,
) -> ScoredItem:
    item_id = item_id or str(uuid.uuid4())
    components = [
        ScoreComponent(key="distance", label="Close enough", value=distance_value, weight=0.05,
                       contribution=distance_value * 0.05),
        ScoreComponent(key="budget", label="In your budget", value=budget_value, weight=0.10,
                       contribution=budget_value * 0.10),
    ]
    return ScoredItem(
        id=item_id,
        source=CandidateSource.HYBRID,
        event=make_event(id=item_id, **event_overrides),
        fit_score=fit,
        mood_score=1.0,
        social_heat=0.2,
        novelty_score=novelty,
        distance_km=distance_km,
        component_breakdown=components,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeBackend:
    """Search backend returning canned hits, optionally slow or failing."""

    def __init__(
        self,
        hits: list[BackendHit] | None = None,
        *,
        delay_s: float = 0.0,
        error: Exception | None = None,
        healthy: bool = True,
    ) -> None:
        self.hits = hits or []
        self.delay_s = delay_s
        self.error = error
        self.healthy = healthy
        self.calls: list[dict[str, Any]] = []

    async def search(self, query_text, city, filters=None, limit=100):
        self.calls.append({"query": query_text, "city": city, "filters": filters, "limit": limit})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return list(self.hits[:limit])

    async def health(self) -> bool:
        return self.healthy


class FakeReranker:
    """Scores candidates from a dict; unknown ids score 0."""

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        *,
        delay_s: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.scores = scores or {}
        self.delay_s = delay_s
        self.error = error
        self.calls = 0

    async def score(self, query, candidates):
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return [self.scores.get(c.id, 0.0) for c in candidates]

    async def health(self) -> bool:
        return True


class FakeGraphStore:
    """Dict-backed graph store with an optional per-call delay or error."""

    def __init__(
        self,
        *,
        similar: dict[str, list[str]] | None = None,
        novelty: dict[str, tuple[int, int, int]] | None = None,
        friends: dict[str, int] | None = None,
        heat: dict[str, tuple[int, int, int]] | None = None,
        delay_s: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.similar = similar or {}
        self.novelty = novelty or {}
        self.friends = friends or {}
        self.heat = heat or {}
        self.delay_s = delay_s
        self.error = error
        self.calls: list[str] = []

    async def _pause(self, name: str) -> None:
        self.calls.append(name)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error

    async def similar_items(self, candidate_ids, min_score):
        await self._pause("similar_items")
        return [
            SimilarItems(eventId=cid, similarIds=[s for s in self.similar.get(cid, []) if s in candidate_ids])
            for cid in candidate_ids
        ]

    async def novelty_counts(self, user_id, candidate_ids):
        await self._pause("novelty_counts")
        out = []
        for cid in candidate_ids:
            history, similar, interacted = self.novelty.get(cid, (0, 0, 0))
            out.append(
                NoveltyCounts(
                    eventId=cid,
                    userHistoryCount=history,
                    similarCount=similar,
                    interactedSimilarCount=interacted,
                )
            )
        return out

    async def friend_overlap(self, user_id, candidate_ids):
        await self._pause("friend_overlap")
        return [
            FriendSignal(eventId=cid, friendCount=self.friends[cid])
            for cid in candidate_ids
            if cid in self.friends
        ]

    async def social_heat(self, candidate_ids, window_hours):
        await self._pause("social_heat")
        return [
            SocialHeatCounts(eventId=cid, views=v, saves=s, attends=a)
            for cid, (v, s, a) in self.heat.items()
            if cid in candidate_ids
        ]

    async def health(self) -> bool:
        return self.error is None


class FailingCacheStore:
    """Cache store whose every call raises."""

    async def find(self, key, now):
        raise ConnectionError("search_cache unreachable")

    async def upsert(self, entry):
        raise ConnectionError("search_cache unreachable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def intention():
    return make_intention(mood="electric", budget="casual")


@pytest.fixture
def clock():
    """Mutable wall clock for cache expiry tests."""
    state = {"now": NOW}

    def _now() -> datetime:
        return state["now"]

    _now.state = state
    return _now


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()


@pytest.fixture
def search_cache(cache_store, clock):
    return SearchCache(cache_store, clock=clock)


@pytest.fixture
def metrics():
    return PipelineMetrics(capacity=50, p95_targets={RECOMMEND_ENDPOINT: 300})


def build_pipeline(
    vector_hits: list[BackendHit] | None = None,
    keyword_hits: list[BackendHit] | None = None,
    *,
    vector: FakeBackend | None = None,
    keyword: FakeBackend | None = None,
    reranker: FakeReranker | None = None,
    store: FakeGraphStore | None = None,
    cache: SearchCache | None = None,
    metrics: PipelineMetrics | None = None,
    **kwargs: Any,
) -> RecommendationPipeline:
    retriever = HybridRetriever(
        vector or FakeBackend(vector_hits),
        keyword or FakeBackend(keyword_hits),
        reranker,
        memo_ttl_s=0,
    )
    graph = GraphEnrichment(store, timeout_s=0.5)
    return RecommendationPipeline(retriever, graph, cache=cache, metrics=metrics, **kwargs)
