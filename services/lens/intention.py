"""
Intention — the normalized "what do I want right now" for one request.

Validated at the pipeline boundary; immutable afterwards. The free-text
interpreter that produces these lives elsewhere; this module only defines the
shape and the defaults that partial token sets are merged over.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Mood(str, Enum):
    CALM = "calm"
    SOCIAL = "social"
    ELECTRIC = "electric"
    ARTISTIC = "artistic"
    GROUNDED = "grounded"


class BudgetTier(str, Enum):
    FREE = "free"
    CASUAL = "casual"
    SPLURGE = "splurge"

    @property
    def rank(self) -> int:
        return _BUDGET_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BudgetTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, BudgetTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, BudgetTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, BudgetTier):
            return NotImplemented
        return self.rank >= other.rank


_BUDGET_ORDER = [BudgetTier.FREE, BudgetTier.CASUAL, BudgetTier.SPLURGE]


class Companion(str, Enum):
    SOLO = "solo"
    PARTNER = "partner"
    CREW = "crew"
    FAMILY = "family"


class IntentionSource(str, Enum):
    INFERRED = "inferred"
    INLINE = "inline"


class IntentionTokens(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    mood: Mood
    until_minutes: int = Field(..., gt=0, le=10080)  # max 7 days
    distance_km: float = Field(..., gt=0.0, le=50.0)
    budget: BudgetTier
    companions: frozenset[Companion] = Field(..., min_length=1)

    @field_validator("mood", "budget", mode="before")
    @classmethod
    def _lowercase(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("companions", mode="before")
    @classmethod
    def _split_companions(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple, set, frozenset)):
            return [c.strip().lower() if isinstance(c, str) else c for c in v]
        return v


class Intention(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    city: str = Field(..., min_length=1, max_length=100)
    now: datetime = Field(..., alias="nowISO")
    tokens: IntentionTokens
    source: IntentionSource = IntentionSource.INFERRED
    user_id: str | None = None
    session_id: str | None = None

    @field_validator("now")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


DEFAULT_TOKENS: dict[str, Any] = {
    "mood": Mood.CALM,
    "until_minutes": 180,
    "distance_km": 5.0,
    "budget": BudgetTier.CASUAL,
    "companions": [Companion.SOLO],
}

DEFAULT_CITY = "New York"


def build_intention(
    *,
    city: str | None = None,
    now: datetime | None = None,
    overrides: dict[str, Any] | None = None,
    user_id: str | None = None,
    session_id: str | None = None,
) -> Intention:
    """
    Merge DEFAULT_TOKENS with partial overrides and validate.

    ``overrides`` may use snake_case or camelCase keys. Source is ``inline``
    when any override was supplied, ``inferred`` otherwise.

    Raises pydantic.ValidationError on out-of-range values.
    """
    merged: dict[str, Any] = dict(DEFAULT_TOKENS)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        snake = _CAMEL_TO_SNAKE.get(key, key)
        merged[snake] = value

    return Intention(
        city=city or DEFAULT_CITY,
        now=now or datetime.now(timezone.utc),
        tokens=IntentionTokens.model_validate(merged),
        source=IntentionSource.INLINE if overrides else IntentionSource.INFERRED,
        user_id=user_id,
        session_id=session_id,
    )


_CAMEL_TO_SNAKE = {"untilMinutes": "until_minutes", "distanceKm": "distance_km"}
