"""
HybridRetriever — vector + keyword search, merged and deduplicated.

Qdrant vector search and Postgres keyword search run concurrently, each under
its own timeout (capped by the request deadline). Either branch may fail or
time out; the other branch's results are still returned.

Graceful degradation:
- Vector timeout/error  -> keyword-only candidates, degraded=True
- Keyword timeout/error -> vector-only candidates, degraded=True
- Both down             -> empty candidate list, degraded=True (not an error)
- Reranker timeout/error -> merged order kept, rerank_applied=False, degraded=True
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable, Protocol

from services.lens.deadline import Deadline
from services.lens.errors import guarded
from services.lens.intention import Intention
from services.lens.models import BackendHit, Candidate, CandidateSource, RetrievalResult
from services.lens.search.reranker import CrossEncoderReranker

logger = logging.getLogger(__name__)

# Similarity assumed for a branch that did not return the id at all
NEUTRAL_SIMILARITY = 0.5

# Events that started this long ago are still worth showing
STARTED_GRACE = timedelta(hours=2)

# Merge tie-break: hybrid first, then vector, then keyword
_SOURCE_PRIORITY = {
    CandidateSource.HYBRID: 0,
    CandidateSource.VECTOR: 1,
    CandidateSource.KEYWORD: 2,
}

_MEMO_MAX_ENTRIES = 256


class SearchBackend(Protocol):
    async def search(
        self,
        query_text: str,
        city: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[BackendHit]: ...


@dataclass
class RetrievalOptions:
    top_k: int = 100
    rerank_top: int = 20
    use_reranker: bool = True
    timeout_ms: int | None = None
    cache_key: str | None = None
    category: str | None = None


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def window_filters(intention: Intention, category: str | None = None) -> dict[str, Any]:
    """Backend filters: start-time window around the intention's time budget."""
    horizon = timedelta(minutes=intention.tokens.until_minutes * 2)
    filters: dict[str, Any] = {
        "starts_after": intention.now - STARTED_GRACE,
        "starts_before": intention.now + horizon,
    }
    if category:
        filters["category"] = category
    return filters


def merge_candidates(
    vector_hits: list[BackendHit],
    keyword_hits: list[BackendHit],
) -> list[Candidate]:
    """
    Union both branches by id.

    An id seen in both branches becomes ``hybrid`` and keeps the higher of its
    two normalized scores. Repeated ids within one branch keep the first hit.
    Output is sorted by score desc; ties go hybrid < vector < keyword, then by
    the best in-branch position, then by id.
    """
    merged: dict[str, Candidate] = {}
    best_rank: dict[str, int] = {}

    for rank, hit in enumerate(vector_hits):
        if hit.id in merged:
            continue
        norm = _clamp01(hit.score)
        merged[hit.id] = Candidate(
            id=hit.id,
            source=CandidateSource.VECTOR,
            raw_score=hit.score,
            score=norm,
            features=hit.features,
            textual_similarity=NEUTRAL_SIMILARITY,
            semantic_similarity=norm,
        )
        best_rank[hit.id] = rank

    keyword_seen: set[str] = set()
    for rank, hit in enumerate(keyword_hits):
        if hit.id in keyword_seen:
            continue
        keyword_seen.add(hit.id)
        norm = _clamp01(hit.score)

        existing = merged.get(hit.id)
        if existing is None:
            merged[hit.id] = Candidate(
                id=hit.id,
                source=CandidateSource.KEYWORD,
                raw_score=hit.score,
                score=norm,
                features=hit.features,
                textual_similarity=norm,
                semantic_similarity=NEUTRAL_SIMILARITY,
            )
            best_rank[hit.id] = rank
            continue

        existing.source = CandidateSource.HYBRID
        existing.textual_similarity = norm
        if norm > existing.score:
            existing.score = norm
            existing.raw_score = hit.score
        best_rank[hit.id] = min(best_rank[hit.id], rank)

    return sorted(
        merged.values(),
        key=lambda c: (-c.score, _SOURCE_PRIORITY[c.source], best_rank[c.id], c.id),
    )


class HybridRetriever:
    """
    Hybrid retrieval over two injected backends plus an optional reranker.

    Usage:
        retriever = HybridRetriever(qdrant_search, keyword_search, reranker)
        result = await retriever.retrieve("live music", intention)
    """

    def __init__(
        self,
        vector: SearchBackend,
        keyword: SearchBackend,
        reranker: CrossEncoderReranker | None = None,
        *,
        vector_timeout_s: float = 2.0,
        keyword_timeout_s: float = 2.0,
        reranker_timeout_s: float = 2.5,
        memo_ttl_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._vector = vector
        self._keyword = keyword
        self._reranker = reranker
        self._vector_timeout_s = vector_timeout_s
        self._keyword_timeout_s = keyword_timeout_s
        self._reranker_timeout_s = reranker_timeout_s
        self._memo_ttl_s = memo_ttl_s
        self._clock = clock
        self._memo: OrderedDict[str, tuple[float, RetrievalResult]] = OrderedDict()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        intention: Intention,
        options: RetrievalOptions | None = None,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        options = options or RetrievalOptions()
        if options.timeout_ms is not None:
            own = Deadline.from_ms(options.timeout_ms)
            deadline = deadline.child(own.remaining()) if deadline else own
        deadline = deadline or Deadline.unbounded()

        filters = window_filters(intention, options.category)
        memo_key = self._memo_key(options.cache_key, filters) if options.cache_key else None

        if memo_key:
            memoized = self._memo_get(memo_key)
            if memoized is not None:
                logger.debug("retrieval memo hit: key=%s", memo_key)
                return memoized

        start = time.monotonic()
        limit = max(options.top_k, options.rerank_top)

        vector_result, keyword_result = await asyncio.gather(
            guarded(
                "vector_search",
                self._vector.search(query, intention.city, filters, limit),
                timeout_s=deadline.budget(self._vector_timeout_s),
                default=[],
            ),
            guarded(
                "keyword_search",
                self._keyword.search(query, intention.city, filters, limit),
                timeout_s=deadline.budget(self._keyword_timeout_s),
                default=[],
            ),
        )

        errors = [
            f"{r.name}:{r.error.value}" for r in (vector_result, keyword_result) if not r.ok
        ]
        candidates = merge_candidates(vector_result.value, keyword_result.value)

        rerank_applied = False
        if options.use_reranker and self._reranker is not None and candidates:
            candidates, rerank_applied, rerank_error = await self._rerank(
                query, candidates, options.rerank_top, deadline
            )
            if rerank_error:
                errors.append(rerank_error)

        candidates = candidates[: options.top_k]
        latency_ms = int((time.monotonic() - start) * 1000)

        result = RetrievalResult(
            candidates=candidates,
            vector_count=len(vector_result.value),
            keyword_count=len(keyword_result.value),
            latency_ms=latency_ms,
            rerank_applied=rerank_applied,
            degraded=bool(errors),
            errors=errors,
        )

        logger.info(
            "retrieved %d candidates (vector=%d keyword=%d rerank=%s degraded=%s) in %dms",
            len(candidates),
            result.vector_count,
            result.keyword_count,
            rerank_applied,
            result.degraded,
            latency_ms,
        )

        if memo_key and not result.degraded:
            self._memo_put(memo_key, result)

        return result

    async def health(self) -> dict[str, bool]:
        """Reachability per backend; never raises."""
        checks = {"vector": self._vector, "keyword": self._keyword}
        if self._reranker is not None:
            checks["reranker"] = self._reranker

        results = await asyncio.gather(
            *(
                guarded(f"{name}_health", backend.health(), timeout_s=2.0, default=False)
                for name, backend in checks.items()
            )
        )
        return {name: bool(r.value) for name, r in zip(checks, results)}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _rerank(
        self,
        query: str,
        candidates: list[Candidate],
        rerank_top: int,
        deadline: Deadline,
    ) -> tuple[list[Candidate], bool, str | None]:
        head = candidates[:rerank_top]
        tail = candidates[rerank_top:]

        scored = await guarded(
            "reranker",
            self._reranker.score(query, head),
            timeout_s=deadline.budget(self._reranker_timeout_s),
            default=None,
        )
        if not scored.ok or scored.value is None:
            return candidates, False, f"reranker:{scored.error.value}"

        rescored = [replace(c, rerank_score=s) for c, s in zip(head, scored.value)]
        rescored.sort(key=lambda c: c.rerank_score, reverse=True)
        return rescored + tail, True, None

    def _memo_key(self, cache_key: str, filters: dict[str, Any]) -> str:
        """
        Caller key plus the start-time window, bucketed to the memo TTL.

        Requests whose reference times fall in different TTL buckets never
        share candidates.
        """
        bucket_s = max(self._memo_ttl_s, 1.0)
        after = int(filters["starts_after"].timestamp() // bucket_s)
        before = int(filters["starts_before"].timestamp() // bucket_s)
        return f"{cache_key}|{after}|{before}"

    def _memo_get(self, key: str) -> RetrievalResult | None:
        entry = self._memo.get(key)
        if entry is None:
            return None
        expires_at, result = entry
        if self._clock() > expires_at:
            del self._memo[key]
            return None
        return result

    def _memo_put(self, key: str, result: RetrievalResult) -> None:
        if self._memo_ttl_s <= 0:
            return
        self._memo[key] = (self._clock() + self._memo_ttl_s, result)
        self._memo.move_to_end(key)
        while len(self._memo) > _MEMO_MAX_ENTRIES:
            self._memo.popitem(last=False)
