"""
Fixed-window rate limiter for research triggers.

Keeps a list of start timestamps per key. Lists prune themselves on every
check; keys are never evicted, which is fine for per-article or per-user
keys but grows with the number of distinct keys seen.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from marginalia.config import get_settings
from marginalia.core.research import metrics
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check."""
    allowed: bool
    retry_after_ms: int = 0


class ResearchRateLimiter:
    """
    At most ``max_runs`` permitted starts per key within ``window`` seconds.

    Mutated only from the event loop thread, so no lock is taken.
    """

    def __init__(
        self,
        window: Optional[float] = None,
        max_runs: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.window = window if window is not None else settings.research.rate_limit_window
        self.max_runs = max_runs if max_runs is not None else settings.research.rate_limit_max_runs
        self._clock = clock
        self._buckets: dict[str, list[float]] = {}

    def check(self, key: str) -> RateLimitDecision:
        """Record a start for ``key`` if allowed, otherwise report the wait."""
        now = self._clock()
        window_start = now - self.window
        pruned = [ts for ts in self._buckets.get(key, []) if ts >= window_start]

        if len(pruned) >= self.max_runs:
            self._buckets[key] = pruned
            retry_after = (pruned[0] if pruned else now) + self.window - now
            retry_after_ms = max(1, int(retry_after * 1000))
            metrics.RATE_LIMIT_DENIED.inc()
            logger.info(f"Rate limit hit for {key}, retry in {retry_after_ms}ms")
            return RateLimitDecision(allowed=False, retry_after_ms=retry_after_ms)

        pruned.append(now)
        self._buckets[key] = pruned
        return RateLimitDecision(allowed=True, retry_after_ms=0)

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)
