"""
Postgres full-text keyword search over the events table.

Ranks with ts_rank_cd(..., 32), which normalizes the rank to r / (r + 1) so
scores already sit in [0, 1). Query terms are OR-ed through
websearch_to_tsquery: a mood query such as "live music dj dance" should match
events mentioning any of the words.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import ValidationError

from services.lens.models import BackendHit, EventFeatures

logger = logging.getLogger(__name__)

_TERM_RE = re.compile(r"[a-z0-9]+")
MAX_TERMS = 16

_SEARCH_SQL = """
WITH docs AS (
    SELECT
        e.id,
        e.title,
        e.description,
        e.category,
        e."startTime",
        e."endTime",
        e."priceMin",
        e."priceMax",
        e."venueName",
        e.neighborhood,
        e.city,
        e.lat,
        e.lon,
        e.tags,
        e."bookingUrl",
        e."imageUrl",
        to_tsvector(
            'english',
            coalesce(e.title, '') || ' ' ||
            coalesce(e.description, '') || ' ' ||
            coalesce(e."venueName", '') || ' ' ||
            coalesce(e.neighborhood, '') || ' ' ||
            coalesce(array_to_string(e.tags, ' '), '')
        ) AS document
    FROM events e
    WHERE e.city = $1
      AND ($3::text IS NULL OR e.category::text = $3)
      AND ($4::timestamptz IS NULL OR e."startTime" >= $4)
      AND ($5::timestamptz IS NULL OR e."startTime" <= $5)
)
SELECT
    docs.*,
    CASE
        WHEN $2::text IS NULL THEN 0.0
        ELSE ts_rank_cd(docs.document, websearch_to_tsquery('english', $2), 32)
    END AS ts_score
FROM docs
WHERE $2::text IS NULL OR docs.document @@ websearch_to_tsquery('english', $2)
ORDER BY ts_score DESC, docs."startTime" ASC, docs.id ASC
LIMIT $6
"""


def build_tsquery(query_text: str) -> str | None:
    """Lowercase alphanumeric terms joined with ``or``. None when empty."""
    terms: list[str] = []
    for term in _TERM_RE.findall((query_text or "").lower()):
        if term not in terms:
            terms.append(term)
        if len(terms) >= MAX_TERMS:
            break
    return " or ".join(terms) if terms else None


class PostgresKeywordSearch:
    """Keyword backend over an asyncpg pool (injected, may be shared)."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def search(
        self,
        query_text: str,
        city: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[BackendHit]:
        if self._pool is None:
            raise ConnectionError("keyword search pool is not configured")

        filters = filters or {}
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                _SEARCH_SQL,
                city,
                build_tsquery(query_text),
                filters.get("category"),
                filters.get("starts_after"),
                filters.get("starts_before"),
                limit,
            )

        hits: list[BackendHit] = []
        for row in rows:
            record = dict(row)
            score = float(record.pop("ts_score") or 0.0)
            record.pop("document", None)
            try:
                features = EventFeatures.model_validate(record)
            except ValidationError as exc:
                logger.warning(
                    "keyword hit %s dropped: invalid row (%d errors)",
                    record.get("id"),
                    exc.error_count(),
                )
                continue
            hits.append(BackendHit(id=features.id, score=score, features=features))
        return hits

    async def health(self) -> bool:
        if self._pool is None:
            return False
        async with self._pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
