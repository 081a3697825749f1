"""
Recommendation pipeline — intention in, ranked items and three slates out.

Flow:
  1. Validate intention + options (RecommendationValidationError, no I/O yet)
  2. Resolve query text (explicit query, else a mood-derived query)
  3. Search cache lookup; a hit pages over cached items and rebuilds slates
  4. Miss: one Deadline for the rest of the run
       retrieve (vector + keyword, reranked)
       graph enrichment (novelty, friends, social heat)
       distance from the city centre, fit score, rank by fit
       optional graph diversification of the ranked order
       compose slates, page
  5. Write-through to the cache when the run was clean and non-empty
  6. Record a metrics sample

Backend faults never raise out of recommend(); they surface as degraded=True.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from services.lens.cache.search_cache import (
    SOURCE_LIVE,
    SearchCache,
    SearchCacheEntry,
    Timeframe,
    normalize_category,
)
from services.lens.deadline import Deadline
from services.lens.errors import RecommendationValidationError, validation_details
from services.lens.geo import distance_from_center
from services.lens.graph.enrichment import DEFAULT_DIVERSITY_THRESHOLD, GraphEnrichment, GraphSignals
from services.lens.intention import Intention, Mood
from services.lens.metrics import RECOMMEND_ENDPOINT, MetricSample, PipelineMetrics
from services.lens.models import Candidate, ScoredItem, Slate, SlateLabel, SlateSet, SocialProof
from services.lens.scoring import fit_score
from services.lens.search.retriever import HybridRetriever, RetrievalOptions
from services.lens.slates.composer import SlateComposer, slate_diversity

logger = logging.getLogger(__name__)

MOOD_QUERIES: dict[Mood, str] = {
    Mood.CALM: "wellness cozy serene",
    Mood.SOCIAL: "food meetup community hangout",
    Mood.ELECTRIC: "live music dj dance nightlife",
    Mood.ARTISTIC: "gallery art theatre design",
    Mood.GROUNDED: "family outdoors community",
}

# Candidates retrieved per requested item
POOL_MULTIPLIER = 4
# Diversification looks this many pages deep
DIVERSIFY_PAGES = 3


def derive_query_for_mood(mood: Mood) -> str:
    return MOOD_QUERIES.get(mood, "city events now")


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecommendOptions(_Record):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=15, ge=6, le=30)
    graph_diversification: bool = False
    query: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=50)
    timeframe: Timeframe | None = None
    timeout_ms: int | None = Field(default=None, gt=0, le=30000)


class RecommendResponse(_Record):
    items: list[ScoredItem]
    slates: SlateSet
    page: int
    page_size: int
    total: int
    has_more: bool
    degraded: bool
    cached: bool
    query: str


class RecommendationPipeline:
    """
    Wires retriever, graph enrichment, scorer, composer and cache.

    All collaborators are injected; the FastAPI lifespan and the cache warmer
    build them once per process.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        graph: GraphEnrichment,
        composer: SlateComposer | None = None,
        cache: SearchCache | None = None,
        metrics: PipelineMetrics | None = None,
        *,
        request_timeout_s: float = 7.0,
        candidate_pool_size: int = 60,
        rerank_top: int = 20,
    ) -> None:
        self._retriever = retriever
        self._graph = graph
        self._composer = composer or SlateComposer()
        self._cache = cache
        self._metrics = metrics
        self._request_timeout_s = request_timeout_s
        self._candidate_pool_size = candidate_pool_size
        self._rerank_top = rerank_top

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def recommend(
        self,
        intention: Intention | dict[str, Any],
        options: RecommendOptions | dict[str, Any] | None = None,
        *,
        trace_id: str | None = None,
        cache_source: str = SOURCE_LIVE,
        refresh: bool = False,
    ) -> RecommendResponse:
        """
        Run one recommendation request.

        ``refresh`` skips the cache read (the write still happens), which is
        how the cache warmer forces a rebuild.
        """
        start = time.monotonic()
        trace_id = trace_id or str(uuid.uuid4())
        intention, options = _validate(intention, options)

        query_text = options.query or derive_query_for_mood(intention.tokens.mood)
        category = normalize_category(options.category)
        timings: dict[str, int] = {}

        timeframe: Timeframe | None = None
        if self._cache is not None:
            timeframe = self._cache.resolve_timeframe(
                options.query, options.timeframe, intention.tokens.until_minutes
            )

        # ------------------------------------------------------------------
        # Step 1: cache lookup
        # ------------------------------------------------------------------
        if self._cache is not None and not refresh:
            t0 = time.monotonic()
            entry = await self._cache.get(intention.city, query_text, category, timeframe)
            timings["cache_read"] = _ms_since(t0)
            if entry is not None:
                response = self._from_cache(entry, options, query_text)
                self._record(trace_id, start, timings, response)
                logger.info(
                    "[%s] cache hit city=%s query=%r items=%d",
                    trace_id,
                    intention.city,
                    query_text,
                    response.total,
                )
                return response

        deadline = (
            Deadline.from_ms(options.timeout_ms)
            if options.timeout_ms is not None
            else Deadline(self._request_timeout_s)
        )

        # ------------------------------------------------------------------
        # Step 2: retrieval
        # ------------------------------------------------------------------
        t0 = time.monotonic()
        retrieval = await self._retriever.retrieve(
            query_text,
            intention,
            RetrievalOptions(
                top_k=max(options.page_size * POOL_MULTIPLIER, self._candidate_pool_size),
                rerank_top=self._rerank_top,
                use_reranker=True,
                cache_key=f"{intention.city}|{query_text}|{category or ''}|{intention.tokens.until_minutes}",
                category=category,
            ),
            deadline=deadline,
        )
        timings["retrieve"] = _ms_since(t0)
        candidates = retrieval.candidates

        # ------------------------------------------------------------------
        # Step 3: graph enrichment
        # ------------------------------------------------------------------
        t0 = time.monotonic()
        signals = await self._graph.enrich(
            intention.user_id, [c.id for c in candidates], deadline=deadline
        )
        timings["enrich"] = _ms_since(t0)

        # ------------------------------------------------------------------
        # Step 4: score + rank
        # ------------------------------------------------------------------
        t0 = time.monotonic()
        scored = [self._score(c, intention, signals) for c in candidates]
        ranked = sorted(scored, key=lambda item: item.fit_score, reverse=True)
        timings["score"] = _ms_since(t0)

        diversify_degraded = False
        if options.graph_diversification and intention.user_id and ranked:
            t0 = time.monotonic()
            ranked, diversify_degraded = await self._diversify(
                ranked, intention.user_id, options.page_size, deadline
            )
            timings["diversify"] = _ms_since(t0)

        # ------------------------------------------------------------------
        # Step 5: slates
        # ------------------------------------------------------------------
        t0 = time.monotonic()
        slates = self._composer.compose(ranked)
        timings["compose"] = _ms_since(t0)

        degraded = retrieval.degraded or signals.degraded or diversify_degraded

        # ------------------------------------------------------------------
        # Step 6: write-through
        # ------------------------------------------------------------------
        if self._cache is not None and not degraded and ranked:
            t0 = time.monotonic()
            await self._cache.put(
                city=intention.city,
                query=query_text,
                category=category,
                timeframe=timeframe,
                results=ranked,
                source=cache_source,
                slate_ids=slates.id_map(),
            )
            timings["cache_write"] = _ms_since(t0)

        response = _page(ranked, slates, options, query_text, degraded=degraded, cached=False)
        self._record(trace_id, start, timings, response)

        logger.info(
            "[%s] recommend city=%s mood=%s candidates=%d page=%d items=%d degraded=%s in %dms",
            trace_id,
            intention.city,
            intention.tokens.mood.value,
            len(candidates),
            options.page,
            len(response.items),
            degraded,
            _ms_since(start),
        )
        return response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _score(self, candidate: Candidate, intention: Intention, signals: GraphSignals) -> ScoredItem:
        features = candidate.features
        distance_km = distance_from_center(intention.city, features.lat, features.lon)
        friend_count = signals.friend_count(candidate.id)
        novelty = signals.novelty.get(candidate.id, 0.5)

        social_proof: SocialProof | None = None
        heat = signals.heat.get(candidate.id)
        if signals.heat_available and heat is not None:
            social_proof = SocialProof(views=heat.views, saves=heat.saves, friends=friend_count)
        elif friend_count:
            social_proof = SocialProof(friends=friend_count)

        fit = fit_score.score(
            features,
            intention,
            social_proof,
            distance_km,
            textual_similarity=candidate.textual_similarity,
            semantic_similarity=candidate.semantic_similarity,
        )

        return ScoredItem(
            id=candidate.id,
            source=candidate.source,
            event=features,
            fit_score=fit.score,
            mood_score=fit.mood_score,
            social_heat=fit.social_heat,
            novelty_score=novelty,
            distance_km=distance_km,
            friend_count=friend_count,
            component_breakdown=fit.components,
            reasons=fit.reasons,
            highlights=fit_score.highlights(
                features,
                intention,
                distance_km=distance_km,
                social_proof=social_proof,
                mood_score=fit.mood_score,
                novelty=novelty,
            ),
        )

    async def _diversify(
        self,
        ranked: list[ScoredItem],
        user_id: str,
        page_size: int,
        deadline: Deadline,
    ) -> tuple[list[ScoredItem], bool]:
        """Diversified ids first (in their order), everything else after in rank order."""
        ids = [item.id for item in ranked]
        result = await self._graph.diversify(
            ids,
            user_id,
            DEFAULT_DIVERSITY_THRESHOLD,
            min(len(ids), page_size * DIVERSIFY_PAGES),
            deadline=deadline,
        )
        position = {item_id: i for i, item_id in enumerate(result.value)}
        unranked = len(position)
        reordered = sorted(
            ranked,
            key=lambda item: position.get(item.id, unranked),
        )
        return reordered, not result.ok

    def _from_cache(
        self,
        entry: SearchCacheEntry,
        options: RecommendOptions,
        query_text: str,
    ) -> RecommendResponse:
        by_id = {item.id: item for item in entry.results}
        if entry.slate_ids:
            slates = SlateSet(
                best=_rebuild(entry, "best", by_id, "top_score"),
                wildcard=_rebuild(entry, "wildcard", by_id, "high_novelty"),
                close_and_easy=_rebuild(entry, "closeAndEasy", by_id, "accessible"),
            )
        else:
            slates = self._composer.compose(entry.results)
        return _page(entry.results, slates, options, query_text, degraded=False, cached=True)

    def _record(
        self,
        trace_id: str,
        start: float,
        timings: dict[str, int],
        response: RecommendResponse,
    ) -> None:
        if self._metrics is None:
            return
        slates = response.slates.as_list()
        overlap = max(
            fit_score.slate_overlap(a.ids, b.ids)
            for i, a in enumerate(slates)
            for b in slates[i + 1:]
        )
        self._metrics.record(
            MetricSample(
                trace_id=trace_id,
                endpoint=RECOMMEND_ENDPOINT,
                total_ms=_ms_since(start),
                stage_timings=timings,
                degraded=response.degraded,
                cache_hit=response.cached,
                slate_overlap=overlap,
            )
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _validate(
    intention: Intention | dict[str, Any],
    options: RecommendOptions | dict[str, Any] | None,
) -> tuple[Intention, RecommendOptions]:
    try:
        if not isinstance(intention, Intention):
            intention = Intention.model_validate(intention)
        if options is None:
            options = RecommendOptions()
        elif not isinstance(options, RecommendOptions):
            options = RecommendOptions.model_validate(options)
    except ValidationError as exc:
        raise RecommendationValidationError(
            "invalid recommendation request",
            details=validation_details(exc),
        ) from exc
    return intention, options


def _rebuild(
    entry: SearchCacheEntry,
    label: str,
    by_id: dict[str, ScoredItem],
    strategy: str,
) -> Slate:
    items = [by_id[i] for i in entry.slate_ids.get(label, []) if i in by_id]
    return Slate(
        label=SlateLabel(label),
        strategy=strategy,
        items=items,
        diversity=slate_diversity(items),
    )


def _page(
    ranked: list[ScoredItem],
    slates: SlateSet,
    options: RecommendOptions,
    query_text: str,
    *,
    degraded: bool,
    cached: bool,
) -> RecommendResponse:
    offset = (options.page - 1) * options.page_size
    items = ranked[offset: offset + options.page_size]
    return RecommendResponse(
        items=items,
        slates=slates,
        page=options.page,
        page_size=options.page_size,
        total=len(ranked),
        has_more=len(ranked) > offset + len(items),
        degraded=degraded,
        cached=cached,
        query=query_text,
    )


def _ms_since(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)
