"""
In-process registry of articles with a research job in flight.

This is the only gate preventing two concurrent runs for one article.
It is correct within a single process; several workers sharing a database
would each keep their own tracker.
"""


class RunTracker:
    """Dedup markers for in-flight research runs."""

    def __init__(self):
        self._running: set[int] = set()

    def try_acquire(self, article_id: int) -> bool:
        """Mark ``article_id`` as running. False if it already was."""
        if article_id in self._running:
            return False
        self._running.add(article_id)
        return True

    def release(self, article_id: int) -> None:
        self._running.discard(article_id)

    def is_running(self, article_id: int) -> bool:
        return article_id in self._running

    def __len__(self) -> int:
        return len(self._running)
