"""
Process-wide wiring: builds every backend client once and tears it down.

Used by the FastAPI lifespan and by standalone jobs, so both run the exact
same pipeline. Each backend degrades independently at startup: a failed
connection is logged and the component falls back (empty keyword pool,
in-memory cache, no graph store) instead of aborting the process.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import asyncpg
from neo4j import AsyncDriver, AsyncGraphDatabase

from services.lens.cache.search_cache import (
    CacheStore,
    InMemoryCacheStore,
    PostgresCacheStore,
    SearchCache,
    Timeframe,
)
from services.lens.config import Settings, settings as default_settings
from services.lens.db.engine import create_engine, create_session_factory
from services.lens.embedding.service import QueryEmbedder
from services.lens.graph.enrichment import GraphEnrichment
from services.lens.graph.store import Neo4jGraphStore
from services.lens.metrics import RECOMMEND_ENDPOINT, PipelineMetrics
from services.lens.pipeline import RecommendationPipeline
from services.lens.search.keyword_client import PostgresKeywordSearch
from services.lens.search.qdrant_client import QdrantEventSearch
from services.lens.search.reranker import CrossEncoderReranker
from services.lens.search.retriever import HybridRetriever
from services.lens.slates.composer import SlateComposer, SlatePolicy, policy_by_name

logger = logging.getLogger(__name__)


@dataclass
class LensRuntime:
    pipeline: RecommendationPipeline
    retriever: HybridRetriever
    graph: GraphEnrichment
    cache: SearchCache
    metrics: PipelineMetrics
    _closers: list[Any] = field(default_factory=list, repr=False)

    async def close(self) -> None:
        for closer in reversed(self._closers):
            try:
                await closer()
            except Exception:
                logger.warning("error during shutdown", exc_info=True)
        self._closers.clear()


async def _create_keyword_pool(cfg: Settings) -> asyncpg.Pool | None:
    if not cfg.database_url:
        return None
    try:
        return await asyncpg.create_pool(
            cfg.database_url,
            min_size=1,
            max_size=10,
            command_timeout=10,
        )
    except Exception as exc:
        logger.warning("keyword search pool failed to connect: %s", exc)
        return None


def _create_graph_driver(cfg: Settings) -> AsyncDriver | None:
    if not cfg.neo4j_uri or not cfg.neo4j_password:
        logger.info("Neo4j not configured; graph signals use neutral values")
        return None
    return AsyncGraphDatabase.driver(
        cfg.neo4j_uri,
        auth=(cfg.neo4j_user, cfg.neo4j_password),
        max_connection_pool_size=50,
        connection_timeout=5,
    )


async def build_runtime(
    cfg: Settings = default_settings,
    *,
    policy: SlatePolicy | None = None,
) -> LensRuntime:
    """``policy`` overrides ``cfg.slate_policy`` when given."""
    closers: list[Any] = []
    policy = policy or policy_by_name(cfg.slate_policy)

    # Search cache: Postgres via SA, in-memory when no database is configured
    cache_store: CacheStore = InMemoryCacheStore()
    if cfg.database_url:
        try:
            engine = create_engine(cfg.database_url)
            cache_store = PostgresCacheStore(create_session_factory(engine))
            closers.append(engine.dispose)
        except Exception as exc:
            logger.warning("SA engine failed to init, using in-memory cache: %s", exc)

    # Retrieval backends
    pool = await _create_keyword_pool(cfg)
    if pool is not None:
        closers.append(pool.close)

    embedder = QueryEmbedder(cfg.embedding_model)
    vector = QdrantEventSearch(embedder.embed_query, collection=cfg.qdrant_collection)
    closers.append(vector.close)

    reranker = None
    if cfg.reranker_url:
        reranker = CrossEncoderReranker(cfg.reranker_url)
        closers.append(reranker.close)

    retriever = HybridRetriever(
        vector,
        PostgresKeywordSearch(pool),
        reranker,
        vector_timeout_s=cfg.vector_timeout_s,
        keyword_timeout_s=cfg.keyword_timeout_s,
        reranker_timeout_s=cfg.reranker_timeout_s,
        memo_ttl_s=cfg.retrieval_memo_ttl_s,
    )

    # Graph
    store = None
    driver = _create_graph_driver(cfg)
    if driver is not None:
        store = Neo4jGraphStore(driver, cfg.neo4j_database)
        closers.append(store.close)
    graph = GraphEnrichment(
        store,
        timeout_s=cfg.graph_timeout_s,
        social_heat_window_hours=cfg.social_heat_window_hours,
    )

    cache = SearchCache(cache_store, default_timeframe=Timeframe(cfg.cache_default_timeframe))
    metrics = PipelineMetrics(
        capacity=cfg.metrics_capacity,
        p95_targets={RECOMMEND_ENDPOINT: cfg.recommend_p95_target_ms},
    )

    pipeline = RecommendationPipeline(
        retriever,
        graph,
        SlateComposer(policy),
        cache,
        metrics,
        request_timeout_s=cfg.request_timeout_s,
        candidate_pool_size=cfg.candidate_pool_size,
        rerank_top=cfg.retrieval_rerank_top,
    )

    logger.info(
        "runtime ready: cache=%s keyword=%s reranker=%s graph=%s policy=%s",
        type(cache_store).__name__,
        pool is not None,
        reranker is not None,
        store is not None,
        policy.name,
    )

    return LensRuntime(
        pipeline=pipeline,
        retriever=retriever,
        graph=graph,
        cache=cache,
        metrics=metrics,
        _closers=closers,
    )


@asynccontextmanager
async def lens_runtime(
    cfg: Settings = default_settings,
    *,
    policy: SlatePolicy | None = None,
) -> AsyncIterator[LensRuntime]:
    runtime = await build_runtime(cfg, policy=policy)
    try:
        yield runtime
    finally:
        await runtime.close()
