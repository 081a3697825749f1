"""
Tests for the search backend clients and the reranker client.

Covers:
  1. build_tsquery term handling
  2. PostgresKeywordSearch: rows -> BackendHits, malformed rows dropped
  3. QdrantEventSearch: filter construction, payload validation
  4. CrossEncoderReranker: happy path and malformed responses
"""

import json
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from services.lens.models import Candidate, CandidateSource
from services.lens.search.keyword_client import PostgresKeywordSearch, build_tsquery
from services.lens.search.qdrant_client import QdrantEventSearch
from services.lens.search.reranker import CrossEncoderReranker, passage_for
from services.lens.tests.conftest import NOW, make_event


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _row(event_id: str, score: float, **overrides: Any) -> dict:
    row = {
        "id": event_id,
        "title": "Jazz at the Vanguard",
        "description": None,
        "category": "MUSIC",
        "startTime": NOW,
        "endTime": None,
        "priceMin": 30.0,
        "priceMax": None,
        "venueName": "Village Vanguard",
        "neighborhood": "West Village",
        "city": "New York",
        "lat": 40.7359,
        "lon": -74.0014,
        "tags": ["jazz"],
        "bookingUrl": None,
        "imageUrl": None,
        "document": "'jazz':1",
        "ts_score": score,
    }
    row.update(overrides)
    return row


def _make_pool(rows: list[dict] | None = None, fetch_raises: Exception | None = None) -> Any:
    conn = AsyncMock()
    if fetch_raises is not None:
        conn.fetch = AsyncMock(side_effect=fetch_raises)
    else:
        conn.fetch = AsyncMock(return_value=rows or [])
    conn.fetchval = AsyncMock(return_value=1)

    pool = MagicMock()

    @asynccontextmanager
    async def _acquire():
        yield conn

    pool.acquire = _acquire
    pool.conn = conn
    return pool


def _candidate(event_id: str, title: str = "Jazz night") -> Candidate:
    return Candidate(
        id=event_id,
        source=CandidateSource.VECTOR,
        raw_score=0.5,
        score=0.5,
        features=make_event(id=event_id, title=title, description="Trio set"),
    )


# ---------------------------------------------------------------------------
# Keyword
# ---------------------------------------------------------------------------


class TestBuildTsquery:
    def test_terms_or_joined_and_deduplicated(self):
        assert build_tsquery("Live music, LIVE dj!") == "live or music or dj"

    def test_empty_is_none(self):
        assert build_tsquery("   ") is None
        assert build_tsquery("!!!") is None


@pytest.mark.asyncio
class TestPostgresKeywordSearch:
    async def test_rows_become_hits(self):
        pool = _make_pool([_row("ev-1", 0.42), _row("ev-2", 0.1)])
        backend = PostgresKeywordSearch(pool)

        hits = await backend.search("jazz", "New York", {"category": "MUSIC"}, 10)

        assert [h.id for h in hits] == ["ev-1", "ev-2"]
        assert hits[0].score == pytest.approx(0.42)
        assert hits[0].features.venue_name == "Village Vanguard"
        args = pool.conn.fetch.await_args.args
        assert args[1:4] == ("New York", "jazz", "MUSIC")
        assert args[-1] == 10

    async def test_malformed_row_dropped(self):
        pool = _make_pool([_row("ev-1", 0.4), _row("ev-2", 0.3, lat=123.0)])

        hits = await PostgresKeywordSearch(pool).search("jazz", "New York")

        assert [h.id for h in hits] == ["ev-1"]

    async def test_fetch_error_propagates_to_caller(self):
        pool = _make_pool(fetch_raises=ConnectionError("pg down"))

        with pytest.raises(ConnectionError):
            await PostgresKeywordSearch(pool).search("jazz", "New York")

    async def test_unconfigured_pool(self):
        backend = PostgresKeywordSearch(None)

        with pytest.raises(ConnectionError):
            await backend.search("jazz", "New York")
        assert await backend.health() is False


# ---------------------------------------------------------------------------
# Qdrant
# ---------------------------------------------------------------------------


def _point(point_id: str, score: float, **payload: Any) -> SimpleNamespace:
    data = {"title": "Jazz", "category": "MUSIC", "startTime": NOW.isoformat(), "city": "New York"}
    data.update(payload)
    return SimpleNamespace(id=point_id, score=score, payload=data)


@pytest.mark.asyncio
class TestQdrantEventSearch:
    async def test_search_validates_payloads(self):
        client = AsyncMock()
        client.query_points = AsyncMock(
            return_value=SimpleNamespace(
                points=[_point("ev-1", 0.91), _point("ev-2", 0.5, startTime="not a date")]
            )
        )
        embed = AsyncMock(return_value=[0.1] * 768)
        backend = QdrantEventSearch(embed, client=client, collection="events_test")

        hits = await backend.search("jazz", "New York", limit=5)

        assert [h.id for h in hits] == ["ev-1"]
        assert hits[0].score == pytest.approx(0.91)
        embed.assert_awaited_once_with("jazz")
        kwargs = client.query_points.await_args.kwargs
        assert kwargs["collection_name"] == "events_test"
        assert kwargs["limit"] == 5

    async def test_filters_become_conditions(self):
        client = AsyncMock()
        client.query_points = AsyncMock(return_value=SimpleNamespace(points=[]))
        backend = QdrantEventSearch(AsyncMock(return_value=[0.0]), client=client)

        await backend.search(
            "jazz",
            "New York",
            {"category": "MUSIC", "starts_after": NOW, "starts_before": NOW},
        )

        must = client.query_points.await_args.kwargs["query_filter"].must
        assert [c.key for c in must] == ["city", "category", "startTime"]

    async def test_embed_failure_propagates(self):
        backend = QdrantEventSearch(AsyncMock(side_effect=RuntimeError("model")), client=AsyncMock())

        with pytest.raises(RuntimeError):
            await backend.search("jazz", "New York")


# ---------------------------------------------------------------------------
# Reranker
# ---------------------------------------------------------------------------


def _reranker(handler) -> CrossEncoderReranker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CrossEncoderReranker("http://reranker.test/score", client=client)


@pytest.mark.asyncio
class TestCrossEncoderReranker:
    async def test_scores_in_passage_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"scores": [0.2, 0.9]})

        reranker = _reranker(handler)

        scores = await reranker.score("jazz", [_candidate("a"), _candidate("b", "Blues")])

        assert scores == [0.2, 0.9]
        assert seen["query"] == "jazz"
        assert seen["passages"][1].startswith("Blues.")

    async def test_wrong_length_raises(self):
        reranker = _reranker(lambda r: httpx.Response(200, json={"scores": [0.1]}))

        with pytest.raises(ValueError):
            await reranker.score("jazz", [_candidate("a"), _candidate("b")])

    async def test_http_error_raises(self):
        reranker = _reranker(lambda r: httpx.Response(503))

        with pytest.raises(httpx.HTTPStatusError):
            await reranker.score("jazz", [_candidate("a")])

    async def test_empty_input_skips_call(self):
        calls = []
        reranker = _reranker(lambda r: calls.append(r) or httpx.Response(200, json={"scores": []}))

        assert await reranker.score("jazz", []) == []
        assert calls == []

    async def test_health(self):
        reranker = _reranker(lambda r: httpx.Response(200 if r.url.path == "/score/health" else 404))
        assert await reranker.health() is True


def test_passage_truncated():
    candidate = _candidate("a", title="x" * 1000)
    assert len(passage_for(candidate)) == 512
