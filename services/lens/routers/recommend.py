"""
Recommend endpoint — POST /recommend

Maps the JSON body onto an Intention (defaults merged with any partial
tokens) plus pipeline options, runs the pipeline, and wraps the result in the
API envelope. Every validation failure surfaces as 422 INVALID_REQUEST.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from services.lens.errors import RecommendationValidationError, validation_details
from services.lens.intention import Intention, build_intention

router = APIRouter(tags=["recommend"])


class IntentionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    city: str | None = None
    now_iso: datetime | None = Field(default=None, alias="nowISO")
    user_id: str | None = None
    session_id: str | None = None
    tokens: dict[str, Any] | None = None


class RecommendRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    intention: IntentionPayload = Field(default_factory=IntentionPayload)
    page: int = 1
    limit: int = 15
    graph_diversification: bool = False
    query: str | None = None
    category: str | None = None
    timeframe: str | None = None
    timeout_ms: int | None = None

    def options(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "page_size": self.limit,
            "graph_diversification": self.graph_diversification,
            "query": self.query,
            "category": self.category,
            "timeframe": self.timeframe.upper() if self.timeframe else None,
            "timeout_ms": self.timeout_ms,
        }


def parse_request(payload: dict[str, Any]) -> tuple[Intention, dict[str, Any]]:
    try:
        body = RecommendRequest.model_validate(payload)
        intention = build_intention(
            city=body.intention.city,
            now=body.intention.now_iso,
            overrides=body.intention.tokens,
            user_id=body.intention.user_id,
            session_id=body.intention.session_id,
        )
    except ValidationError as exc:
        raise RecommendationValidationError(
            "invalid recommendation request",
            details=validation_details(exc),
        ) from exc
    return intention, body.options()


@router.post("/recommend")
async def recommend(request: Request, payload: dict[str, Any] = Body(default_factory=dict)) -> dict:
    intention, options = parse_request(payload)

    result = await request.app.state.pipeline.recommend(
        intention,
        options,
        trace_id=request.state.request_id,
    )

    return {
        "success": True,
        "data": {
            **result.model_dump(mode="json", by_alias=True),
            "intention": intention.model_dump(mode="json", by_alias=True),
        },
        "requestId": request.state.request_id,
    }
