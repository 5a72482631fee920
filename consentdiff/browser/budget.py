"""
Wall-clock budget shared by every blocking wait in a run.

The governor is cooperative: it never cancels anything, it only
answers how long the next wait may last.  Every wait in the
orchestrator asks ``allocate`` for its duration so that a slow
first phase cannot starve the second one.
"""

from __future__ import annotations

import time
from collections.abc import Callable


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class TimeBudget:
    """Fixed ceiling measured from construction."""

    def __init__(
        self,
        ceiling_ms: int,
        *,
        floor_ms: int = 250,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Start the clock.

        Args:
            ceiling_ms: Hard budget for the whole run.
            floor_ms: Smallest duration ``allocate`` hands out.
            clock: Millisecond clock, injectable for tests.
        """
        self.ceiling_ms = ceiling_ms
        self.floor_ms = floor_ms
        self._clock = clock or _monotonic_ms
        self._started = self._clock()

    def elapsed_ms(self) -> int:
        """Milliseconds since the run started."""
        return int(self._clock() - self._started)

    def remaining_ms(self) -> int:
        """Milliseconds left before the ceiling, never negative."""
        return max(0, self.ceiling_ms - self.elapsed_ms())

    def sufficient_for(self, needed_ms: int) -> bool:
        """True when at least *needed_ms* remain."""
        return self.remaining_ms() >= needed_ms

    def allocate(self, requested_ms: int, buffer_ms: int = 0) -> int:
        """Duration for the next wait: ``min(requested, max(floor, remaining - buffer))``."""
        return min(requested_ms, max(self.floor_ms, self.remaining_ms() - buffer_ms))
