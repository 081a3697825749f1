"""
Slate composer — three disjoint, purpose-differentiated slates.

    best          highest fitScore
    wildcard      fitScore above a floor, most novel first, capped per category
    closeAndEasy  0.45 distanceFit + 0.35 budgetFit + 0.20 fitScore,
                  only items reachable on foot within the travel limit

Slates are filled greedily in that order. An item placed in one slate is
removed from the pool, so a later slate may come up short but never reuses an
item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from services.lens.geo import estimate_travel_minutes
from services.lens.models import ScoredItem, Slate, SlateLabel, SlateSet

logger = logging.getLogger(__name__)

_CLOSE_EASY_WEIGHTS = {"distance": 0.45, "budget": 0.35, "fit": 0.20}

# Neutral component values used when an item carries no breakdown entry
_NEUTRAL_FIT = 0.6


@dataclass(frozen=True)
class SlatePolicy:
    name: str
    best_top_k: int = 10
    wildcard_top_k: int = 10
    close_easy_top_k: int = 10
    wildcard_min_score: float = 0.4
    wildcard_category_cap: int = 2
    close_easy_max_travel_minutes: int = 30


DEFAULT_POLICY = SlatePolicy(name="balanced")

EXPLORATION_POLICY = SlatePolicy(
    name="80safe-20novel",
    best_top_k=8,
    wildcard_top_k=12,
    close_easy_top_k=8,
    wildcard_min_score=0.35,
)

POLICIES: dict[str, SlatePolicy] = {
    p.name: p for p in (DEFAULT_POLICY, EXPLORATION_POLICY)
}


def policy_by_name(name: str) -> SlatePolicy:
    """Raises KeyError for an unknown policy name."""
    try:
        return POLICIES[name]
    except KeyError:
        raise KeyError(f"unknown slate policy {name!r}; expected one of {sorted(POLICIES)}") from None


def slate_diversity(items: list[ScoredItem]) -> float:
    """Mean of category spread (over min(n, 5)) and venue spread (over n)."""
    if not items:
        return 0.0
    n = len(items)
    categories = {i.event.category for i in items if i.event.category}
    venues = {i.event.venue_name for i in items if i.event.venue_name}
    category_spread = min(len(categories) / min(n, 5), 1.0)
    venue_spread = min(len(venues) / n, 1.0)
    return round((category_spread + venue_spread) / 2, 4)


def close_and_easy_score(item: ScoredItem) -> float:
    return (
        _CLOSE_EASY_WEIGHTS["distance"] * item.component_value("distance", _NEUTRAL_FIT)
        + _CLOSE_EASY_WEIGHTS["budget"] * item.component_value("budget", _NEUTRAL_FIT)
        + _CLOSE_EASY_WEIGHTS["fit"] * item.fit_score
    )


class SlateComposer:
    def __init__(self, policy: SlatePolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def compose(self, items: list[ScoredItem]) -> SlateSet:
        policy = self.policy
        # Stable on input order so equal scores keep their ranking position
        pool = sorted(_unique(items), key=lambda i: i.fit_score, reverse=True)

        best = pool[: policy.best_top_k]
        pool = _without(pool, best)

        wildcard = self._wildcard(pool)
        pool = _without(pool, wildcard)

        close_easy = self._close_and_easy(pool)

        slates = SlateSet(
            best=Slate(
                label=SlateLabel.BEST,
                strategy="top_score",
                items=best,
                diversity=slate_diversity(best),
            ),
            wildcard=Slate(
                label=SlateLabel.WILDCARD,
                strategy="high_novelty",
                items=wildcard,
                diversity=slate_diversity(wildcard),
            ),
            close_and_easy=Slate(
                label=SlateLabel.CLOSE_AND_EASY,
                strategy="accessible",
                items=close_easy,
                diversity=slate_diversity(close_easy),
            ),
        )
        logger.debug(
            "composed slates (%s): best=%d wildcard=%d closeAndEasy=%d",
            policy.name,
            len(best),
            len(wildcard),
            len(close_easy),
        )
        return slates

    def _wildcard(self, pool: list[ScoredItem]) -> list[ScoredItem]:
        eligible = [i for i in pool if i.fit_score >= self.policy.wildcard_min_score]
        eligible.sort(key=lambda i: (i.novelty_score, i.fit_score), reverse=True)

        picked: list[ScoredItem] = []
        per_category: dict[str | None, int] = {}
        for item in eligible:
            if len(picked) >= self.policy.wildcard_top_k:
                break
            category = item.event.category.upper() if item.event.category else None
            if per_category.get(category, 0) >= self.policy.wildcard_category_cap:
                continue
            per_category[category] = per_category.get(category, 0) + 1
            picked.append(item)
        return picked

    def _close_and_easy(self, pool: list[ScoredItem]) -> list[ScoredItem]:
        limit = self.policy.close_easy_max_travel_minutes
        reachable = [
            i for i in pool
            if i.distance_km is None or estimate_travel_minutes(i.distance_km) <= limit
        ]
        reachable.sort(key=close_and_easy_score, reverse=True)
        return reachable[: self.policy.close_easy_top_k]


def _unique(items: list[ScoredItem]) -> list[ScoredItem]:
    seen: set[str] = set()
    out: list[ScoredItem] = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            out.append(item)
    return out


def _without(pool: list[ScoredItem], taken: list[ScoredItem]) -> list[ScoredItem]:
    taken_ids = {i.id for i in taken}
    return [i for i in pool if i.id not in taken_ids]
