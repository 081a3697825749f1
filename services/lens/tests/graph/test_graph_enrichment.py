"""
Tests for services.lens.graph.enrichment

Covers:
  1. novelty_from_counts edge cases
  2. greedy_diversify: fewest near-duplicates first, backfill in input order
  3. Slow store past its deadline -> input order truncated, neutral novelty
  4. Store errors -> neutral values, degraded
  5. Unconfigured store / anonymous user -> neutral values, not degraded
  6. enrich() combines all three signals
"""

import pytest

from services.lens.deadline import Deadline
from services.lens.errors import ErrorKind
from services.lens.graph.enrichment import (
    NEUTRAL_NOVELTY,
    GraphEnrichment,
    greedy_diversify,
    novelty_from_counts,
)
from services.lens.graph.store import NoveltyCounts
from services.lens.tests.conftest import FakeGraphStore


def _counts(history: int, similar: int, interacted: int) -> NoveltyCounts:
    return NoveltyCounts(
        eventId="ev",
        userHistoryCount=history,
        similarCount=similar,
        interactedSimilarCount=interacted,
    )


class TestNoveltyFromCounts:
    def test_no_history_is_neutral(self):
        assert novelty_from_counts(_counts(0, 5, 0)) == NEUTRAL_NOVELTY

    def test_history_but_no_similar_items_is_fully_novel(self):
        assert novelty_from_counts(_counts(3, 0, 0)) == 1.0

    def test_ratio_of_interacted_similar(self):
        assert novelty_from_counts(_counts(10, 4, 1)) == pytest.approx(0.75)
        assert novelty_from_counts(_counts(10, 4, 4)) == 0.0


class TestGreedyDiversify:
    def test_near_duplicate_of_accepted_item_is_deferred(self):
        near = {"a": ["b"], "b": ["a"]}
        assert greedy_diversify(["a", "b", "c"], near, 2) == ["c", "a"]

    def test_backfills_in_input_order(self):
        near = {"a": ["b"], "b": ["a"]}
        assert greedy_diversify(["a", "b", "c"], near, 3) == ["c", "a", "b"]

    def test_no_duplicates_keeps_input_order(self):
        assert greedy_diversify(["a", "b", "c"], {}, 2) == ["a", "b"]

    def test_empty_and_zero_max(self):
        assert greedy_diversify([], {}, 5) == []
        assert greedy_diversify(["a"], {}, 0) == []

    def test_repeated_input_ids_collapse(self):
        assert greedy_diversify(["a", "a", "b"], {}, 5) == ["a", "b"]


@pytest.mark.asyncio
class TestGraphEnrichment:
    async def test_diversify_uses_similarity_edges(self):
        store = FakeGraphStore(similar={"a": ["b"], "b": ["a"]})
        graph = GraphEnrichment(store)

        result = await graph.diversify(["a", "b", "c"], "user-1", 0.7, 2)

        assert result.ok
        assert result.value == ["c", "a"]

    async def test_diversify_slow_store_falls_back_to_input_order(self):
        store = FakeGraphStore(similar={"a": ["b"]}, delay_s=0.2)
        graph = GraphEnrichment(store, timeout_s=5.0)
        ids = ["e1", "e2", "e3", "e4", "e5"]

        result = await graph.diversify(ids, "user-1", 0.7, 3, deadline=Deadline(0.01))

        assert result.value == ["e1", "e2", "e3"]
        assert result.error == ErrorKind.BACKEND_TIMEOUT

    async def test_novelty_slow_store_defaults_to_neutral(self):
        store = FakeGraphStore(novelty={"e1": (5, 2, 0)}, delay_s=0.2)
        graph = GraphEnrichment(store, timeout_s=0.01)
        ids = ["e1", "e2", "e3"]

        result = await graph.novelty("user-1", ids)

        assert result.value == {"e1": 0.5, "e2": 0.5, "e3": 0.5}
        assert result.error == ErrorKind.BACKEND_TIMEOUT

    async def test_novelty_from_store(self):
        store = FakeGraphStore(novelty={"e1": (5, 4, 1), "e2": (5, 0, 0)})
        graph = GraphEnrichment(store)

        result = await graph.novelty("user-1", ["e1", "e2", "e3"])

        assert result.ok
        assert result.value == {"e1": pytest.approx(0.75), "e2": 1.0, "e3": 0.5}

    async def test_anonymous_user_gets_neutral_novelty_without_store_call(self):
        store = FakeGraphStore()
        graph = GraphEnrichment(store)

        result = await graph.novelty(None, ["e1"])

        assert result.ok
        assert result.value == {"e1": NEUTRAL_NOVELTY}
        assert store.calls == []

    async def test_friend_overlap_drops_zero_counts(self):
        store = FakeGraphStore(friends={"e1": 2, "e2": 0})
        graph = GraphEnrichment(store)

        result = await graph.friend_overlap("user-1", ["e1", "e2"])

        assert list(result.value) == ["e1"]
        assert result.value["e1"].friend_count == 2

    async def test_social_heat_fills_zeros_for_missing(self):
        store = FakeGraphStore(heat={"e1": (120, 8, 2)})
        graph = GraphEnrichment(store)

        result = await graph.social_heat(["e1", "e2"])

        assert result.value["e1"].views == 120
        assert result.value["e2"].views == 0
        assert result.value["e2"].saves == 0

    async def test_store_error_is_unavailable(self):
        graph = GraphEnrichment(FakeGraphStore(error=ConnectionError("bolt refused")))

        result = await graph.social_heat(["e1"])

        assert result.error == ErrorKind.BACKEND_UNAVAILABLE
        assert result.value["e1"].views == 0

    async def test_unconfigured_store_is_neutral_and_not_degraded(self):
        graph = GraphEnrichment(None)

        signals = await graph.enrich("user-1", ["e1", "e2"])
        diversified = await graph.diversify(["e1", "e2", "e3"], "user-1", 0.7, 2)

        assert signals.degraded is False
        assert signals.novelty == {"e1": 0.5, "e2": 0.5}
        assert signals.friends == {}
        assert signals.heat_available is False
        assert diversified.ok
        assert diversified.value == ["e1", "e2"]
        assert await graph.health() is None

    async def test_enrich_combines_signals(self):
        store = FakeGraphStore(
            novelty={"e1": (3, 0, 0)},
            friends={"e2": 1},
            heat={"e1": (60, 4, 0)},
        )
        graph = GraphEnrichment(store)

        signals = await graph.enrich("user-1", ["e1", "e2"])

        assert signals.degraded is False
        assert signals.heat_available is True
        assert signals.novelty["e1"] == 1.0
        assert signals.friend_count("e2") == 1
        assert signals.friend_count("e1") == 0
        assert signals.heat["e1"].views == 60

    async def test_enrich_degraded_when_store_fails(self):
        graph = GraphEnrichment(FakeGraphStore(error=RuntimeError("graph down")))

        signals = await graph.enrich("user-1", ["e1"])

        assert signals.degraded is True
        assert signals.heat_available is False
        assert signals.novelty == {"e1": 0.5}
        assert len(signals.errors) == 3

    async def test_health_reflects_store(self):
        assert await GraphEnrichment(FakeGraphStore()).health() is True
        assert await GraphEnrichment(FakeGraphStore(error=RuntimeError("x"))).health() is False
