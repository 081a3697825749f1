"""
Error taxonomy for the recommendation pipeline.

Non-fatal backend failures never cross a component boundary as exceptions.
They are converted into a BranchResult carrying an ErrorKind, and surface to
the caller only through the ``degraded`` flag. The one exception the caller
sees is RecommendationValidationError, raised before any backend call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    BACKEND_TIMEOUT = "backend_timeout"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class RecommendationValidationError(ValueError):
    """Malformed intention or options at the pipeline boundary."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


@dataclass
class BranchResult(Generic[T]):
    """Outcome of one time-boxed backend call."""

    name: str
    value: T
    error: ErrorKind | None = None
    detail: str | None = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


async def guarded(
    name: str,
    awaitable: Awaitable[T],
    *,
    timeout_s: float | None,
    default: T,
) -> BranchResult[T]:
    """
    Await ``awaitable`` under ``timeout_s`` and never raise for backend faults.

    Timeout -> BACKEND_TIMEOUT, any other Exception -> BACKEND_UNAVAILABLE;
    both return ``default``. Cancellation of the caller still propagates.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    try:
        value = await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError:
        latency_ms = int((loop.time() - start) * 1000)
        logger.warning("%s timed out after %dms (budget=%s)", name, latency_ms, timeout_s)
        return BranchResult(
            name=name,
            value=default,
            error=ErrorKind.BACKEND_TIMEOUT,
            detail=f"timeout after {latency_ms}ms",
            latency_ms=latency_ms,
        )
    except Exception as exc:
        latency_ms = int((loop.time() - start) * 1000)
        logger.warning("%s unavailable: %s", name, exc, exc_info=True)
        return BranchResult(
            name=name,
            value=default,
            error=ErrorKind.BACKEND_UNAVAILABLE,
            detail=str(exc) or type(exc).__name__,
            latency_ms=latency_ms,
        )

    return BranchResult(
        name=name,
        value=value,
        latency_ms=int((loop.time() - start) * 1000),
    )


def validation_details(exc: Any) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic ValidationError (no raw inputs echoed)."""
    return [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
