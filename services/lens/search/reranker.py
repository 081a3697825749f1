"""
HTTP client for the cross-encoder reranker.

Contract: POST {"query": str, "passages": [str]} -> {"scores": [float]}
with one score per passage, in passage order.
"""

from __future__ import annotations

import logging

import httpx

from services.lens.models import Candidate

logger = logging.getLogger(__name__)

MAX_PASSAGE_CHARS = 512


def passage_for(candidate: Candidate) -> str:
    f = candidate.features
    text = f"{f.title}. {f.description or ''}".strip()
    return text[:MAX_PASSAGE_CHARS]


class CrossEncoderReranker:
    """Scores (query, passage) pairs via a remote cross-encoder."""

    def __init__(self, endpoint_url: str, *, client: httpx.AsyncClient | None = None) -> None:
        self._endpoint_url = endpoint_url
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def score(self, query: str, candidates: list[Candidate]) -> list[float]:
        """
        Return one reranker score per candidate.

        Raises httpx.HTTPError on transport / status errors and ValueError on
        a malformed response body; the retriever turns both into a skipped
        rerank.
        """
        if not candidates:
            return []

        client = await self._get_client()
        response = await client.post(
            self._endpoint_url,
            json={"query": query, "passages": [passage_for(c) for c in candidates]},
        )
        response.raise_for_status()

        scores = response.json().get("scores")
        if not isinstance(scores, list) or len(scores) != len(candidates):
            raise ValueError(
                f"reranker returned {len(scores) if isinstance(scores, list) else 'no'} "
                f"scores for {len(candidates)} passages"
            )
        return [float(s) for s in scores]

    async def health(self) -> bool:
        client = await self._get_client()
        response = await client.get(f"{self._endpoint_url.rstrip('/')}/health")
        return response.is_success

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
