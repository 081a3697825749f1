"""
Search cache — TTL-keyed pipeline results with cascading fallback lookups.

Key: (city, normalized query, category or none, timeframe).

    get()  exact key -> same key with the query blanked -> same key with the
           category dropped. First unexpired entry wins.
    put()  idempotent upsert on the full key; last writer wins.

TTL per timeframe: TODAY 6h, WEEK 12h, MONTH 24h. Expired entries are
invisible to get() but stay in the store; nothing here purges them.

Store failures never propagate: a failed read is a miss, a failed write is
logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from services.lens.db.models import SearchCacheRow
from services.lens.models import ScoredItem

logger = logging.getLogger(__name__)


class Timeframe(str, Enum):
    TODAY = "TODAY"
    WEEK = "WEEK"
    MONTH = "MONTH"


TTL_BY_TIMEFRAME: dict[Timeframe, timedelta] = {
    Timeframe.TODAY: timedelta(hours=6),
    Timeframe.WEEK: timedelta(hours=12),
    Timeframe.MONTH: timedelta(hours=24),
}

WINDOW_BY_TIMEFRAME: dict[Timeframe, timedelta] = {
    Timeframe.TODAY: timedelta(days=1),
    Timeframe.WEEK: timedelta(days=7),
    Timeframe.MONTH: timedelta(days=30),
}

SOURCE_LIVE = "LIVE"
SOURCE_BATCH = "BATCH"


# ---------------------------------------------------------------------------
# Key normalization
# ---------------------------------------------------------------------------

def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def normalize_category(category: str | None) -> str | None:
    if category is None:
        return None
    normalized = category.strip().upper()
    return normalized or None


def infer_timeframe(text: str | None) -> Timeframe | None:
    """Timeframe hinted by free text ("tonight", "this week"); None if no hint."""
    if not text:
        return None
    normalized = text.lower()
    if "today" in normalized or "tonight" in normalized or "now" in normalized:
        return Timeframe.TODAY
    if "week" in normalized:
        return Timeframe.WEEK
    if "month" in normalized:
        return Timeframe.MONTH
    return None


def timeframe_for_minutes(until_minutes: int) -> Timeframe:
    if until_minutes <= 24 * 60:
        return Timeframe.TODAY
    if until_minutes <= 7 * 24 * 60:
        return Timeframe.WEEK
    return Timeframe.MONTH


def cache_expiry_for(timeframe: Timeframe, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + TTL_BY_TIMEFRAME.get(timeframe, TTL_BY_TIMEFRAME[Timeframe.TODAY])


def timeframe_window(timeframe: Timeframe, now: datetime | None = None) -> tuple[datetime, datetime]:
    """(start, end) of the event window a timeframe covers, starting now."""
    start = now or datetime.now(timezone.utc)
    return start, start + WINDOW_BY_TIMEFRAME[timeframe]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheKey:
    city: str
    query: str
    category: str | None
    timeframe: Timeframe

    @classmethod
    def build(
        cls,
        city: str,
        query: str | None,
        category: str | None,
        timeframe: Timeframe,
    ) -> "CacheKey":
        return cls(
            city=city.strip(),
            query=normalize_query(query),
            category=normalize_category(category),
            timeframe=timeframe,
        )

    def fallbacks(self) -> list["CacheKey"]:
        """Lookup order: exact, query blanked, category dropped."""
        keys = [self]
        if self.query:
            keys.append(CacheKey(self.city, "", self.category, self.timeframe))
        if self.category:
            keys.append(CacheKey(self.city, self.query, None, self.timeframe))
        return keys


class SearchCacheEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    city: str
    query: str = ""
    category: str | None = None
    timeframe: Timeframe
    results: list[ScoredItem] = Field(default_factory=list)
    slate_ids: dict[str, list[str]] = Field(default_factory=dict)
    generated_at: datetime
    expires_at: datetime
    source: str = SOURCE_LIVE

    @field_validator("generated_at", "expires_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.city, self.query, self.category, self.timeframe)

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at >= now


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class CacheStore(Protocol):
    async def find(self, key: CacheKey, now: datetime) -> SearchCacheEntry | None: ...

    async def upsert(self, entry: SearchCacheEntry) -> None: ...


class InMemoryCacheStore:
    """Dict-backed store for local dev and tests."""

    def __init__(self) -> None:
        self._entries: dict[CacheKey, SearchCacheEntry] = {}
        self._lock = asyncio.Lock()

    async def find(self, key: CacheKey, now: datetime) -> SearchCacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(now):
            return None
        return entry

    async def upsert(self, entry: SearchCacheEntry) -> None:
        async with self._lock:
            self._entries[entry.key] = entry

    def __len__(self) -> int:
        return len(self._entries)


class PostgresCacheStore:
    """search_cache table via SQLAlchemy; upsert is INSERT ... ON CONFLICT."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def find(self, key: CacheKey, now: datetime) -> SearchCacheEntry | None:
        stmt = (
            select(SearchCacheRow)
            .where(
                SearchCacheRow.city == key.city,
                SearchCacheRow.query == key.query,
                SearchCacheRow.category == (key.category or ""),
                SearchCacheRow.timeframe == key.timeframe.value,
                SearchCacheRow.expiresAt >= now,
            )
            .order_by(SearchCacheRow.generatedAt.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return SearchCacheEntry(
            city=row.city,
            query=row.query,
            category=row.category or None,
            timeframe=Timeframe(row.timeframe),
            results=row.results or [],
            slate_ids=row.slateIds or {},
            generated_at=row.generatedAt,
            expires_at=row.expiresAt,
            source=row.source,
        )

    async def upsert(self, entry: SearchCacheEntry) -> None:
        values: dict[str, Any] = {
            "city": entry.city,
            "query": entry.query,
            "category": entry.category or "",
            "timeframe": entry.timeframe.value,
            "results": [item.model_dump(mode="json", by_alias=True) for item in entry.results],
            "eventIds": [item.id for item in entry.results],
            "slateIds": entry.slate_ids,
            "generatedAt": entry.generated_at,
            "expiresAt": entry.expires_at,
            "source": entry.source,
        }
        update_cols = {k: v for k, v in values.items() if k not in ("city", "query", "category", "timeframe")}
        stmt = (
            pg_insert(SearchCacheRow)
            .values(**values)
            .on_conflict_do_update(constraint="unique_search_cache_key", set_=update_cols)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class SearchCache:
    def __init__(
        self,
        store: CacheStore,
        *,
        default_timeframe: Timeframe = Timeframe.TODAY,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._default_timeframe = default_timeframe
        self._clock = clock

    def resolve_timeframe(
        self,
        query: str | None,
        timeframe: Timeframe | None = None,
        until_minutes: int | None = None,
    ) -> Timeframe:
        """Explicit timeframe, else a hint in the query, else untilMinutes, else default."""
        if timeframe is not None:
            return timeframe
        hinted = infer_timeframe(query)
        if hinted is not None:
            return hinted
        if until_minutes is not None:
            return timeframe_for_minutes(until_minutes)
        return self._default_timeframe

    async def get(
        self,
        city: str,
        query: str | None = None,
        category: str | None = None,
        timeframe: Timeframe | None = None,
    ) -> SearchCacheEntry | None:
        key = CacheKey.build(city, query, category, timeframe or self._default_timeframe)
        now = self._clock()
        for candidate in key.fallbacks():
            try:
                entry = await self._store.find(candidate, now)
            except Exception as exc:
                logger.warning("search cache read failed for %s: %s", candidate, exc, exc_info=True)
                return None
            if entry is not None and entry.is_fresh(now):
                if candidate != key:
                    logger.debug("search cache fallback hit: %s -> %s", key, candidate)
                return entry
        return None

    async def put(
        self,
        *,
        city: str,
        query: str | None,
        category: str | None,
        timeframe: Timeframe,
        results: list[ScoredItem],
        source: str = SOURCE_LIVE,
        expires_at: datetime | None = None,
        slate_ids: dict[str, list[str]] | None = None,
    ) -> SearchCacheEntry | None:
        now = self._clock()
        key = CacheKey.build(city, query, category, timeframe)
        entry = SearchCacheEntry(
            city=key.city,
            query=key.query,
            category=key.category,
            timeframe=key.timeframe,
            results=results,
            slate_ids=slate_ids or {},
            generated_at=now,
            expires_at=expires_at or cache_expiry_for(timeframe, now),
            source=source,
        )
        try:
            await self._store.upsert(entry)
        except Exception as exc:
            logger.warning("search cache write failed for %s: %s", key, exc, exc_info=True)
            return None
        logger.info(
            "search cache stored %d results for %s (source=%s, expires=%s)",
            len(results),
            key,
            source,
            entry.expires_at.isoformat(),
        )
        return entry
