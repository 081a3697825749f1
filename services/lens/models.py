"""
Typed records that flow through the recommendation pipeline.

Records that cross a boundary (backend payloads, cache blobs, HTTP responses)
are pydantic models validated on ingress. Internal hand-offs between stages
are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CandidateSource(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class SlateLabel(str, Enum):
    BEST = "best"
    WILDCARD = "wildcard"
    CLOSE_AND_EASY = "closeAndEasy"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Event feature snapshot — validated from backend payloads
# ---------------------------------------------------------------------------

class EventFeatures(_Record):
    """Feature snapshot of one event, as returned by either search backend."""

    id: str = Field(..., min_length=1)
    title: str = ""
    description: str | None = None
    category: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    price_min: float | None = Field(default=None, ge=0.0)
    price_max: float | None = Field(default=None, ge=0.0)
    venue_name: str | None = None
    neighborhood: str | None = None
    city: str = ""
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lon: float | None = Field(default=None, ge=-180.0, le=180.0)
    tags: list[str] = Field(default_factory=list)
    booking_url: str | None = None
    image_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, UUID)) else v

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def price(self) -> float | None:
        """Entry price used for budget fit: priceMin, else priceMax."""
        if self.price_min is not None:
            return self.price_min
        return self.price_max


# ---------------------------------------------------------------------------
# Retrieval hand-offs
# ---------------------------------------------------------------------------

@dataclass
class BackendHit:
    """One hit from a search backend, payload already validated."""

    id: str
    score: float
    features: EventFeatures


@dataclass
class Candidate:
    """A retrieved item before scoring and enrichment."""

    id: str
    source: CandidateSource
    raw_score: float
    score: float  # normalized [0, 1]
    features: EventFeatures
    textual_similarity: float = 0.5
    semantic_similarity: float = 0.5
    rerank_score: float | None = None


@dataclass
class SocialProof:
    views: int = 0
    saves: int = 0
    friends: int = 0


# ---------------------------------------------------------------------------
# Scored output — serialized to the API and the search cache
# ---------------------------------------------------------------------------

class ScoreComponent(_Record):
    key: str
    label: str
    value: float
    weight: float
    contribution: float


class ScoredItem(_Record):
    id: str
    source: CandidateSource
    event: EventFeatures
    fit_score: float = Field(..., ge=0.0, le=1.0)
    mood_score: float
    social_heat: float
    novelty_score: float = 0.5
    distance_km: float | None = None
    friend_count: int = 0
    component_breakdown: list[ScoreComponent]
    reasons: list[str] = Field(default_factory=list, max_length=3)
    highlights: list[str] = Field(default_factory=list)

    def component(self, key: str) -> ScoreComponent | None:
        for c in self.component_breakdown:
            if c.key == key:
                return c
        return None

    def component_value(self, key: str, default: float = 0.0) -> float:
        c = self.component(key)
        return c.value if c is not None else default


class Slate(_Record):
    label: SlateLabel
    strategy: str
    items: list[ScoredItem] = Field(default_factory=list)
    diversity: float = 0.0

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]


class SlateSet(_Record):
    best: Slate
    wildcard: Slate
    close_and_easy: Slate

    def as_list(self) -> list[Slate]:
        return [self.best, self.wildcard, self.close_and_easy]

    def id_map(self) -> dict[str, list[str]]:
        return {slate.label.value: slate.ids for slate in self.as_list()}


@dataclass
class RetrievalResult:
    candidates: list[Candidate]
    vector_count: int
    keyword_count: int
    latency_ms: int
    rerank_applied: bool
    degraded: bool
    errors: list[str] = field(default_factory=list)
