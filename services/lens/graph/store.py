"""
Neo4j graph store — read-only queries over users, events and their edges.

Graph shape (written by the ingestion workers, not by this service):

    (:User)-[:VIEWED|SAVED|ATTENDED {timestamp}]->(:Event)
    (:User)-[:FRIENDS_WITH]-(:User)
    (:Event)-[:SIMILAR {score}]-(:Event)

Every query runs in a READ session. Records are validated into pydantic
models on the way out so callers never see raw neo4j Records.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from neo4j import READ_ACCESS, AsyncDriver
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class _GraphRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SimilarItems(_GraphRecord):
    event_id: str = Field(..., alias="eventId")
    similar_ids: list[str] = Field(default_factory=list, alias="similarIds")


class NoveltyCounts(_GraphRecord):
    event_id: str = Field(..., alias="eventId")
    user_history_count: int = Field(0, ge=0, alias="userHistoryCount")
    similar_count: int = Field(0, ge=0, alias="similarCount")
    interacted_similar_count: int = Field(0, ge=0, alias="interactedSimilarCount")


class FriendAction(_GraphRecord):
    user_id: str = Field(..., alias="userId")
    action: str


class FriendSignal(_GraphRecord):
    event_id: str = Field(..., alias="eventId")
    friend_count: int = Field(0, ge=0, alias="friendCount")
    friends: list[FriendAction] = Field(default_factory=list)


class SocialHeatCounts(_GraphRecord):
    event_id: str = Field(..., alias="eventId")
    views: int = Field(0, ge=0)
    saves: int = Field(0, ge=0)
    attends: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Cypher
# ---------------------------------------------------------------------------

_SIMILAR_ITEMS = """
UNWIND $candidateIds AS candidateId
MATCH (candidate:Event {id: candidateId})
OPTIONAL MATCH (candidate)-[sim:SIMILAR]-(other:Event)
WHERE other.id IN $candidateIds AND other.id <> candidateId AND sim.score >= $minScore
WITH candidate, COLLECT(DISTINCT other.id) AS similarIds
RETURN candidate.id AS eventId, similarIds
"""

_NOVELTY_COUNTS = """
OPTIONAL MATCH (u:User {id: $userId})-[:VIEWED|SAVED|ATTENDED]->(seen:Event)
WITH COLLECT(DISTINCT seen.id) AS seenIds
UNWIND $candidateIds AS candidateId
MATCH (candidate:Event {id: candidateId})
OPTIONAL MATCH (candidate)-[:SIMILAR]-(similar:Event)
WITH candidate, seenIds, COLLECT(DISTINCT similar.id) AS similarIds
RETURN
    candidate.id AS eventId,
    SIZE(seenIds) AS userHistoryCount,
    SIZE(similarIds) AS similarCount,
    SIZE([sid IN similarIds WHERE sid IN seenIds]) AS interactedSimilarCount
"""

_FRIEND_OVERLAP = """
OPTIONAL MATCH (u:User {id: $userId})-[:FRIENDS_WITH]-(friend:User)
WITH COLLECT(DISTINCT friend.id) AS friendIds
UNWIND $candidateIds AS candidateId
MATCH (candidate:Event {id: candidateId})
OPTIONAL MATCH (f:User)-[action:VIEWED|SAVED|ATTENDED]->(candidate)
WHERE f.id IN friendIds
WITH candidate,
     [a IN COLLECT(DISTINCT {userId: f.id, action: toLower(type(action))})
      WHERE a.userId IS NOT NULL] AS friendActions
RETURN
    candidate.id AS eventId,
    SIZE(friendActions) AS friendCount,
    friendActions AS friends
"""

_SOCIAL_HEAT = """
UNWIND $candidateIds AS candidateId
MATCH (e:Event {id: candidateId})
OPTIONAL MATCH (:User)-[v:VIEWED]->(e) WHERE v.timestamp >= $cutoff
WITH e, COUNT(v) AS views
OPTIONAL MATCH (:User)-[s:SAVED]->(e) WHERE s.timestamp >= $cutoff
WITH e, views, COUNT(s) AS saves
OPTIONAL MATCH (:User)-[a:ATTENDED]->(e) WHERE a.timestamp >= $cutoff
WITH e, views, saves, COUNT(a) AS attends
RETURN e.id AS eventId, views, saves, attends
"""


class Neo4jGraphStore:
    """Thin async wrapper over an injected neo4j AsyncDriver."""

    def __init__(self, driver: AsyncDriver, database: str | None = None) -> None:
        self._driver = driver
        self._database = database

    async def _read(self, query: str, **params: Any) -> list[dict[str, Any]]:
        async with self._driver.session(
            database=self._database,
            default_access_mode=READ_ACCESS,
        ) as session:
            result = await session.run(query, params)
            return await result.data()

    async def similar_items(self, candidate_ids: list[str], min_score: float) -> list[SimilarItems]:
        """Per candidate, the other candidates it is SIMILAR to with score >= min_score."""
        rows = await self._read(_SIMILAR_ITEMS, candidateIds=candidate_ids, minScore=min_score)
        return [SimilarItems.model_validate(r) for r in rows]

    async def novelty_counts(self, user_id: str, candidate_ids: list[str]) -> list[NoveltyCounts]:
        rows = await self._read(_NOVELTY_COUNTS, userId=user_id, candidateIds=candidate_ids)
        return [NoveltyCounts.model_validate(r) for r in rows]

    async def friend_overlap(self, user_id: str, candidate_ids: list[str]) -> list[FriendSignal]:
        rows = await self._read(_FRIEND_OVERLAP, userId=user_id, candidateIds=candidate_ids)
        return [FriendSignal.model_validate(r) for r in rows]

    async def social_heat(
        self,
        candidate_ids: list[str],
        window_hours: int,
        *,
        now: datetime | None = None,
    ) -> list[SocialHeatCounts]:
        """Interaction counts per candidate within the trailing window."""
        now = now or datetime.now(timezone.utc)
        # Edge timestamps are epoch milliseconds
        cutoff = int((now - timedelta(hours=window_hours)).timestamp() * 1000)
        rows = await self._read(_SOCIAL_HEAT, candidateIds=candidate_ids, cutoff=cutoff)
        return [SocialHeatCounts.model_validate(r) for r in rows]

    async def health(self) -> bool:
        await self._driver.verify_connectivity()
        return True

    async def close(self) -> None:
        await self._driver.close()
