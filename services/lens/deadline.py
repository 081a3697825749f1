"""
Request deadline propagation.

One Deadline is created at the pipeline entry point and handed down to every
sub-call. Each backend asks the deadline for its budget, which is the smaller
of its own configured timeout and whatever is left of the request. Sub-calls
are wrapped in asyncio.wait_for with that budget, so when the request budget
runs out the in-flight tasks are cancelled instead of leaking.
"""

from __future__ import annotations

import time
from typing import Callable


class Deadline:
    """Monotonic absolute deadline. ``None`` timeout means unbounded."""

    def __init__(
        self,
        timeout_s: float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if timeout_s is None else clock() + max(timeout_s, 0.0)

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    @classmethod
    def from_ms(cls, timeout_ms: int | float | None) -> "Deadline":
        return cls(None if timeout_ms is None else timeout_ms / 1000.0)

    def remaining(self) -> float | None:
        """Seconds left, floored at zero. None when unbounded."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    def budget(self, cap_s: float | None = None) -> float | None:
        """Timeout to hand a sub-call: min(cap_s, remaining)."""
        remaining = self.remaining()
        if cap_s is None:
            return remaining
        if remaining is None:
            return cap_s
        return min(cap_s, remaining)

    def child(self, cap_s: float | None) -> "Deadline":
        """A sub-deadline that can never outlive this one."""
        return Deadline(self.budget(cap_s), clock=self._clock)
