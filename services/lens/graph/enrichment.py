"""
Graph enrichment — novelty, friend overlap, social heat and diversification.

Every store call is time-boxed through ``guarded``. On timeout or an
unavailable store each signal falls back to a neutral value and the returned
BranchResult carries the error kind, which the pipeline folds into its
``degraded`` flag:

    diversify       -> input order truncated to max_results
    novelty         -> 0.5 for every candidate
    friend_overlap  -> no friends for any candidate
    social_heat     -> zero counters for every candidate

An unconfigured store (no NEO4J_URI) serves the same neutral values without
reporting degradation. Nothing in this module raises for backend faults.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from services.lens.deadline import Deadline
from services.lens.errors import BranchResult, guarded
from services.lens.graph.store import (
    FriendSignal,
    NoveltyCounts,
    SimilarItems,
    SocialHeatCounts,
)

logger = logging.getLogger(__name__)

NEUTRAL_NOVELTY = 0.5
DEFAULT_DIVERSITY_THRESHOLD = 0.7


class GraphStore(Protocol):
    async def similar_items(self, candidate_ids: list[str], min_score: float) -> list[SimilarItems]: ...

    async def novelty_counts(self, user_id: str, candidate_ids: list[str]) -> list[NoveltyCounts]: ...

    async def friend_overlap(self, user_id: str, candidate_ids: list[str]) -> list[FriendSignal]: ...

    async def social_heat(self, candidate_ids: list[str], window_hours: int) -> list[SocialHeatCounts]: ...

    async def health(self) -> bool: ...


@dataclass
class GraphSignals:
    """All per-candidate graph signals for one request."""

    novelty: dict[str, float] = field(default_factory=dict)
    friends: dict[str, FriendSignal] = field(default_factory=dict)
    heat: dict[str, SocialHeatCounts] = field(default_factory=dict)
    heat_available: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)

    def friend_count(self, event_id: str) -> int:
        signal = self.friends.get(event_id)
        return signal.friend_count if signal is not None else 0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def novelty_from_counts(counts: NoveltyCounts) -> float:
    """
    1 - (similar items the user interacted with / similar items).

    No user history -> 0.5. History but no similar items -> 1.0.
    """
    if counts.user_history_count == 0:
        return NEUTRAL_NOVELTY
    if counts.similar_count == 0:
        return 1.0
    ratio = counts.interacted_similar_count / counts.similar_count
    return max(0.0, min(1.0, 1.0 - ratio))


def greedy_diversify(
    candidate_ids: list[str],
    near_duplicates: dict[str, list[str]],
    max_results: int,
) -> list[str]:
    """
    Pick candidates with the fewest in-set near-duplicates first.

    A candidate is accepted when none of its near-duplicates has already been
    accepted. Remaining slots are backfilled in the original input order.
    """
    ids = list(dict.fromkeys(candidate_ids))
    if max_results <= 0 or not ids:
        return []

    position = {cid: i for i, cid in enumerate(ids)}
    order = sorted(ids, key=lambda cid: (len(near_duplicates.get(cid, ())), position[cid]))

    accepted: list[str] = []
    accepted_set: set[str] = set()
    for cid in order:
        if len(accepted) >= max_results:
            break
        if any(dup in accepted_set for dup in near_duplicates.get(cid, ())):
            continue
        accepted.append(cid)
        accepted_set.add(cid)

    for cid in ids:
        if len(accepted) >= max_results:
            break
        if cid not in accepted_set:
            accepted.append(cid)
            accepted_set.add(cid)

    return accepted


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class GraphEnrichment:
    """Graph signals with hard timeouts and neutral fallbacks."""

    def __init__(
        self,
        store: GraphStore | None,
        *,
        timeout_s: float = 1.5,
        social_heat_window_hours: int = 24,
    ) -> None:
        self._store = store
        self._timeout_s = timeout_s
        self._window_hours = social_heat_window_hours

    @property
    def configured(self) -> bool:
        return self._store is not None

    async def health(self) -> bool | None:
        """Store reachability; None when no store is configured."""
        if self._store is None:
            return None
        result = await guarded("graph_health", self._store.health(), timeout_s=self._timeout_s, default=False)
        return bool(result.value)

    def _budget(self, deadline: Deadline | None) -> float | None:
        return (deadline or Deadline.unbounded()).budget(self._timeout_s)

    async def diversify(
        self,
        candidate_ids: list[str],
        user_id: str | None = None,
        diversity_threshold: float = DEFAULT_DIVERSITY_THRESHOLD,
        max_results: int = 20,
        *,
        deadline: Deadline | None = None,
    ) -> BranchResult[list[str]]:
        # user_id is accepted for interface parity; near-duplicates are user-agnostic
        fallback = list(dict.fromkeys(candidate_ids))[:max_results]
        if not candidate_ids:
            return BranchResult(name="graph_diversify", value=[])
        if self._store is None:
            return BranchResult(name="graph_diversify", value=fallback)

        result = await guarded(
            "graph_diversify",
            self._store.similar_items(candidate_ids, diversity_threshold),
            timeout_s=self._budget(deadline),
            default=None,
        )
        if not result.ok or result.value is None:
            result.value = fallback
            return result

        near = {r.event_id: r.similar_ids for r in result.value}
        result.value = greedy_diversify(candidate_ids, near, max_results)
        return result

    async def novelty(
        self,
        user_id: str | None,
        candidate_ids: list[str],
        *,
        deadline: Deadline | None = None,
    ) -> BranchResult[dict[str, float]]:
        fallback = {cid: NEUTRAL_NOVELTY for cid in candidate_ids}
        if not user_id or not candidate_ids or self._store is None:
            return BranchResult(name="graph_novelty", value=fallback)

        result = await guarded(
            "graph_novelty",
            self._store.novelty_counts(user_id, candidate_ids),
            timeout_s=self._budget(deadline),
            default=None,
        )
        if not result.ok or result.value is None:
            result.value = fallback
            return result

        scores = dict(fallback)
        for counts in result.value:
            if counts.event_id in scores:
                scores[counts.event_id] = novelty_from_counts(counts)
        result.value = scores
        return result

    async def friend_overlap(
        self,
        user_id: str | None,
        candidate_ids: list[str],
        *,
        deadline: Deadline | None = None,
    ) -> BranchResult[dict[str, FriendSignal]]:
        if not user_id or not candidate_ids or self._store is None:
            return BranchResult(name="graph_friends", value={})

        result = await guarded(
            "graph_friends",
            self._store.friend_overlap(user_id, candidate_ids),
            timeout_s=self._budget(deadline),
            default=None,
        )
        if not result.ok or result.value is None:
            result.value = {}
            return result

        result.value = {s.event_id: s for s in result.value if s.friend_count > 0}
        return result

    async def social_heat(
        self,
        candidate_ids: list[str],
        window_hours: int | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> BranchResult[dict[str, SocialHeatCounts]]:
        zeros = {cid: SocialHeatCounts(event_id=cid) for cid in candidate_ids}
        if not candidate_ids:
            return BranchResult(name="graph_heat", value={})
        if self._store is None:
            return BranchResult(name="graph_heat", value=zeros)

        result = await guarded(
            "graph_heat",
            self._store.social_heat(candidate_ids, window_hours or self._window_hours),
            timeout_s=self._budget(deadline),
            default=None,
        )
        if not result.ok or result.value is None:
            result.value = zeros
            return result

        for counts in result.value:
            if counts.event_id in zeros:
                zeros[counts.event_id] = counts
        result.value = zeros
        return result

    async def enrich(
        self,
        user_id: str | None,
        candidate_ids: list[str],
        *,
        deadline: Deadline | None = None,
    ) -> GraphSignals:
        """Novelty, friends and heat fetched concurrently."""
        novelty, friends, heat = await asyncio.gather(
            self.novelty(user_id, candidate_ids, deadline=deadline),
            self.friend_overlap(user_id, candidate_ids, deadline=deadline),
            self.social_heat(candidate_ids, deadline=deadline),
        )

        signals = GraphSignals(
            novelty=novelty.value,
            friends=friends.value,
            heat=heat.value,
            heat_available=heat.ok and self.configured,
            errors=[f"{r.name}:{r.error.value}" for r in (novelty, friends, heat) if not r.ok],
        )
        if signals.degraded:
            logger.info("graph enrichment degraded: %s", ", ".join(signals.errors))
        return signals

