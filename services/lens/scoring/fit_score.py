"""
Fit score — how well one event matches one intention.

Seven weighted components, each valued in [0, 1]:

    textual   0.25  lexical match from the keyword branch
    semantic  0.20  embedding similarity from the vector branch
    mood      0.20  category vs the mood's primary categories
    social    0.15  sigmoid blend of views / saves / friends
    budget    0.10  entry price vs the budget tier threshold
    distance  0.05  distance vs the travel radius
    recency   0.05  start time vs the time budget

The weights sum to 1.0, so the score is the plain sum of contributions and
stays in [0, 1]. Reasons are the labels of components valued >= 0.6, ordered
by contribution, at most three.

Pure functions only; no I/O.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime

from services.lens.intention import BudgetTier, Intention, Mood
from services.lens.models import EventFeatures, ScoreComponent, SocialProof

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COMPONENT_WEIGHTS: dict[str, float] = {
    "textual": 0.25,
    "semantic": 0.20,
    "mood": 0.20,
    "social": 0.15,
    "budget": 0.10,
    "distance": 0.05,
    "recency": 0.05,
}

BUDGET_THRESHOLDS: dict[BudgetTier, float] = {
    BudgetTier.FREE: 0.0,
    BudgetTier.CASUAL: 75.0,
    BudgetTier.SPLURGE: 250.0,
}

MOOD_CATEGORY_MAP: dict[Mood, frozenset[str]] = {
    Mood.CALM: frozenset({"FITNESS", "ARTS", "WELLNESS", "FOOD"}),
    Mood.SOCIAL: frozenset({"FOOD", "NETWORKING", "MUSIC"}),
    Mood.ELECTRIC: frozenset({"MUSIC", "DANCE", "COMEDY"}),
    Mood.ARTISTIC: frozenset({"ARTS", "THEATRE", "DANCE"}),
    Mood.GROUNDED: frozenset({"FAMILY", "FITNESS", "OTHER"}),
}

REASON_MIN_VALUE = 0.6
MAX_REASONS = 3
MAX_HIGHLIGHTS = 4

_NO_SOCIAL_DATA = 0.2
_UNKNOWN_PRICE = 0.6
_UNKNOWN_DISTANCE = 0.6
_NO_CATEGORY = 0.4


@dataclass
class FitScoreResult:
    score: float
    mood_score: float
    social_heat: float
    reasons: list[str]
    components: list[ScoreComponent] = field(default_factory=list)

    def value_of(self, key: str, default: float = 0.0) -> float:
        for c in self.components:
            if c.key == key:
                return c.value
        return default


# ---------------------------------------------------------------------------
# Component rules
# ---------------------------------------------------------------------------

def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def mood_fit(mood: Mood, category: str | None) -> float:
    if not category:
        return _NO_CATEGORY
    normalized = category.upper()
    primary = MOOD_CATEGORY_MAP[mood]
    if normalized in primary:
        return 1.0
    if any(match in normalized for match in primary):
        return 0.7
    return 0.3


def social_heat(social_proof: SocialProof | None) -> float:
    if social_proof is None:
        return _NO_SOCIAL_DATA
    view_heat = _sigmoid(social_proof.views / 50)
    save_heat = _sigmoid(social_proof.saves / 15)
    friend_heat = _sigmoid(social_proof.friends)
    return _clamp01((view_heat + save_heat * 1.2 + friend_heat * 1.5) / 3.7)


def budget_fit(price: float | None, budget: BudgetTier) -> float:
    """Unknown price is neutral for every tier; free tier is all-or-nothing."""
    if price is None:
        return _UNKNOWN_PRICE
    threshold = BUDGET_THRESHOLDS[budget]
    if budget is BudgetTier.FREE:
        return 1.0 if price == 0 else 0.0
    if price <= threshold:
        return 1.0
    if price <= threshold * 1.3:
        return 0.6
    return 0.2


def distance_fit(distance_km: float | None, radius_km: float | None) -> float:
    if distance_km is None or not radius_km or radius_km <= 0:
        return _UNKNOWN_DISTANCE
    ratio = distance_km / radius_km
    if ratio <= 0.5:
        return 1.0
    if ratio <= 1.0:
        return 0.7
    if ratio <= 1.5:
        return 0.4
    return 0.1


def recency_fit(start_time: datetime, now: datetime, until_minutes: int) -> float:
    diff_minutes = (start_time - now).total_seconds() / 60
    if diff_minutes < 0:
        return 0.2
    if diff_minutes <= until_minutes:
        return 1.0
    if diff_minutes <= until_minutes * 1.5:
        return 0.6
    return 0.3


def _labels(mood: Mood) -> dict[str, str]:
    return {
        "textual": "Matches your keywords",
        "semantic": "Similar to what you like",
        "mood": f"Fits your {mood.value} vibe",
        "social": "Trending with locals",
        "budget": "In your budget",
        "distance": "Close enough",
        "recency": "Happening in your window",
    }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def score(
    event: EventFeatures,
    intention: Intention,
    social_proof: SocialProof | None = None,
    distance_km: float | None = None,
    *,
    textual_similarity: float = 0.5,
    semantic_similarity: float = 0.5,
) -> FitScoreResult:
    """Score one event against one intention. Deterministic and side-effect free."""
    tokens = intention.tokens
    mood_score = mood_fit(tokens.mood, event.category)
    heat = social_heat(social_proof)

    values = {
        "textual": _clamp01(textual_similarity),
        "semantic": _clamp01(semantic_similarity),
        "mood": mood_score,
        "social": heat,
        "budget": budget_fit(event.price, tokens.budget),
        "distance": distance_fit(distance_km, tokens.distance_km),
        "recency": recency_fit(event.start_time, intention.now, tokens.until_minutes),
    }
    labels = _labels(tokens.mood)

    components = [
        ScoreComponent(
            key=key,
            label=labels[key],
            value=values[key],
            weight=weight,
            contribution=values[key] * weight,
        )
        for key, weight in COMPONENT_WEIGHTS.items()
    ]

    # Float drift can push the sum a hair past 1.0
    total = _clamp01(sum(c.contribution for c in components))

    return FitScoreResult(
        score=total,
        mood_score=mood_score,
        social_heat=heat,
        reasons=reasons_for(components),
        components=components,
    )


def reasons_for(components: list[ScoreComponent]) -> list[str]:
    """Labels of strong components, highest contribution first (stable on ties)."""
    strong = [c for c in components if c.value >= REASON_MIN_VALUE]
    strong.sort(key=lambda c: c.contribution, reverse=True)
    return [c.label for c in strong[:MAX_REASONS]]


def highlights(
    event: EventFeatures,
    intention: Intention,
    *,
    distance_km: float | None = None,
    social_proof: SocialProof | None = None,
    mood_score: float = 0.0,
    novelty: float | None = None,
) -> list[str]:
    """
    Concrete detail strings for the card UI ("0.4 km walk", "Free entry").

    Unlike reasons these quote the underlying numbers.
    """
    out: list[str] = []

    if distance_km is not None:
        if distance_km <= 1:
            out.append(f"{round(distance_km, 1)} km walk")
        elif distance_km <= 3:
            out.append(f"{round(distance_km * 12)} min walk")
        elif distance_km <= 10:
            out.append(f"{round(distance_km)} km away")

    if event.price_min is not None:
        if event.price_min == 0:
            out.append("Free entry")
        elif event.price_min < 30:
            out.append(f"Under ${event.price_min:g}")

    if mood_score >= 0.7 and event.category:
        out.append(f"Matches {intention.tokens.mood.value}")

    if social_proof is not None:
        if social_proof.friends > 0:
            plural = "s" if social_proof.friends > 1 else ""
            out.append(f"{social_proof.friends} friend{plural} interested")
        elif social_proof.saves > 10:
            out.append(f"{social_proof.saves} saves nearby")
        elif social_proof.views > 50:
            out.append(f"{social_proof.views} views nearby")

    if novelty is not None and novelty >= 0.8:
        out.append("Novel for you")

    hours_until = (event.start_time - intention.now).total_seconds() / 3600
    if hours_until < 1:
        out.append("Starting soon")
    elif hours_until < 3:
        out.append(f"In {round(hours_until)}h")

    if event.venue_name and social_proof is not None and social_proof.views > 100:
        out.append(f"At {event.venue_name}")

    return out[:MAX_HIGHLIGHTS]


def slate_overlap(a: list[str], b: list[str]) -> float:
    """Jaccard overlap of two id lists; 0.0 when both are empty."""
    ids_a, ids_b = set(a), set(b)
    union = ids_a | ids_b
    if not union:
        return 0.0
    return len(ids_a & ids_b) / len(union)
