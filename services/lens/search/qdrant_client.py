"""
Qdrant vector search client wrapper.

Embeds the query text with the injected embed function, then runs a filtered
similarity search against the events collection. Payloads are validated into
EventFeatures on the way in; hits with malformed payloads are dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    DatetimeRange,
    FieldCondition,
    Filter,
    MatchValue,
    SearchParams,
)

from services.lens.config import settings
from services.lens.models import BackendHit, EventFeatures

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT_S = 3

EmbedFn = Callable[[str], Awaitable[list[float]]]


class QdrantEventSearch:
    """Async Qdrant client with lazy connection and payload validation."""

    def __init__(
        self,
        embed_fn: EmbedFn,
        *,
        client: AsyncQdrantClient | None = None,
        collection: str | None = None,
    ) -> None:
        self._embed_fn = embed_fn
        self._client = client
        self._collection = collection or settings.qdrant_collection

    async def _get_client(self) -> AsyncQdrantClient:
        if self._client is None:
            self._client = AsyncQdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key or None,
                timeout=SEARCH_TIMEOUT_S,
            )
        return self._client

    async def search(
        self,
        query_text: str,
        city: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[BackendHit]:
        """
        Vector search scoped to one city.

        Supported filters: ``category`` (exact), ``starts_after`` and
        ``starts_before`` (datetimes on the startTime payload field).
        """
        must_conditions = [
            FieldCondition(key="city", match=MatchValue(value=city)),
        ]

        if filters:
            if filters.get("category"):
                must_conditions.append(
                    FieldCondition(key="category", match=MatchValue(value=filters["category"]))
                )
            starts_after: datetime | None = filters.get("starts_after")
            starts_before: datetime | None = filters.get("starts_before")
            if starts_after or starts_before:
                must_conditions.append(
                    FieldCondition(
                        key="startTime",
                        range=DatetimeRange(gte=starts_after, lte=starts_before),
                    )
                )

        vector = await self._embed_fn(query_text)
        client = await self._get_client()
        response = await client.query_points(
            collection_name=self._collection,
            query=vector,
            query_filter=Filter(must=must_conditions),
            limit=limit,
            with_payload=True,
            search_params=SearchParams(hnsw_ef=128, exact=False),
        )

        hits: list[BackendHit] = []
        for hit in response.points:
            payload = dict(hit.payload or {})
            payload["id"] = str(hit.id)
            try:
                features = EventFeatures.model_validate(payload)
            except ValidationError as exc:
                logger.warning(
                    "qdrant hit %s dropped: invalid payload (%d errors)",
                    hit.id,
                    exc.error_count(),
                )
                continue
            hits.append(BackendHit(id=features.id, score=float(hit.score), features=features))
        return hits

    async def health(self) -> bool:
        client = await self._get_client()
        await client.get_collections()
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
