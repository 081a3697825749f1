"""
Search cache warmer.

Runs the full recommendation pipeline for every city x mood combination with
the default intention and writes the results to the search cache tagged
source='BATCH'. The cache read is skipped so every run rebuilds its entries.

A combination counts as warmed only when the pipeline ran clean (not degraded)
and produced items; degraded runs are never written to the cache. The job
exits non-zero only when every combination failed.

Entry point:
    async def run_cache_warm(pipeline, cities, moods, now=None)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from services.lens.cache.search_cache import SOURCE_BATCH
from services.lens.intention import Mood, build_intention
from services.lens.pipeline import RecommendationPipeline, RecommendOptions

logger = logging.getLogger(__name__)

DEFAULT_CITIES = ["New York"]

# Largest page so the cached snapshot covers a full first screen
_WARM_PAGE_SIZE = 30


@dataclass
class WarmStats:
    combinations: int = 0
    warmed: int = 0
    degraded: int = 0
    empty: int = 0
    errors: int = 0
    failures: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed(self) -> int:
        return self.degraded + self.empty + self.errors

    @property
    def all_failed(self) -> bool:
        return self.combinations > 0 and self.warmed == 0


async def run_cache_warm(
    pipeline: RecommendationPipeline,
    cities: list[str],
    moods: list[Mood],
    now: datetime | None = None,
) -> WarmStats:
    now = now or datetime.now(timezone.utc)
    stats = WarmStats()
    start = time.monotonic()

    for city in cities:
        for mood in moods:
            stats.combinations += 1
            label = f"{city}/{mood.value}"
            try:
                intention = build_intention(city=city, now=now, overrides={"mood": mood})
                response = await pipeline.recommend(
                    intention,
                    RecommendOptions(page_size=_WARM_PAGE_SIZE),
                    trace_id=f"warm:{label}",
                    cache_source=SOURCE_BATCH,
                    refresh=True,
                )
            except Exception as exc:
                stats.errors += 1
                stats.failures.append(label)
                logger.error("cache_warmer: %s failed: %s", label, exc, exc_info=True)
                continue

            if response.degraded:
                stats.degraded += 1
                stats.failures.append(label)
                logger.warning("cache_warmer: %s degraded, not cached", label)
            elif not response.items:
                stats.empty += 1
                stats.failures.append(label)
                logger.warning("cache_warmer: %s returned no items", label)
            else:
                stats.warmed += 1
                logger.info("cache_warmer: %s warmed with %d items", label, response.total)

    stats.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "cache_warmer: complete combinations=%d warmed=%d failed=%d duration_ms=%d",
        stats.combinations,
        stats.warmed,
        stats.failed,
        stats.duration_ms,
    )
    return stats


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str] | None = None):
    import argparse

    parser = argparse.ArgumentParser(description="Pre-populate the search cache")
    parser.add_argument(
        "--city",
        action="append",
        dest="cities",
        help="City to warm (repeatable, default: New York)",
    )
    parser.add_argument(
        "--mood",
        action="append",
        dest="moods",
        choices=[m.value for m in Mood],
        help="Mood to warm (repeatable, default: all moods)",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    from services.lens.runtime import lens_runtime

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    cities = args.cities or DEFAULT_CITIES
    moods = [Mood(m) for m in args.moods] if args.moods else list(Mood)

    async with lens_runtime() as runtime:
        stats = await run_cache_warm(runtime.pipeline, cities, moods)

    if stats.all_failed:
        logger.error("cache_warmer: every combination failed: %s", stats.failures)
        return 1
    return 0


if __name__ == "__main__":
    import sys

    sys.exit(asyncio.run(main()))
