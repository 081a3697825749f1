"""Health check endpoint with per-backend reachability and latency summary."""

from fastapi import APIRouter, Request

from services.lens.metrics import RECOMMEND_ENDPOINT

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    state = request.app.state
    backends: dict[str, bool | None] = await state.retriever.health()
    backends["graph"] = await state.graph.health()

    summary = state.metrics.summary(RECOMMEND_ENDPOINT)
    # None means "not configured", which is not a failure
    healthy = all(ok is not False for ok in backends.values())

    return {
        "success": True,
        "data": {
            "status": "healthy" if healthy else "degraded",
            "version": state.settings.app_version,
            "backends": backends,
            "recommend": {
                "count": summary.count,
                "p50Ms": summary.p50,
                "p95Ms": summary.p95,
                "p99Ms": summary.p99,
                "targetMs": summary.target,
                "meetingTargetPct": round(summary.meeting_target, 1),
            }
            if summary is not None
            else None,
        },
        "requestId": request.state.request_id,
    }
