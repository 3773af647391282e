"""
Research update events.

A single global (topic-less) publish/subscribe feed. Every persisted change
to a research record is published here; subscribers apply their own access
rules, for example with :func:`audience_filter`.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, ClassVar, Optional

from marginalia.config import get_settings
from marginalia.core.research.models import ResearchStatus
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)

EventPredicate = Callable[["ResearchUpdatedEvent"], bool]
EventListener = Callable[["ResearchUpdatedEvent"], None]


@dataclass(frozen=True)
class ResearchUpdatedEvent:
    """Notification that an article's research record changed."""

    name: ClassVar[str] = "research.updated"

    article_id: int
    status: ResearchStatus
    updated_at: Optional[str]
    is_published: bool = False
    author_user_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "articleId": self.article_id,
            "status": self.status.value,
            "updatedAt": self.updated_at,
            "isPublished": self.is_published,
            "authorUserId": self.author_user_id,
        }

    def encode_sse(self) -> str:
        """Encode as a Server-Sent Events frame."""
        return f"event: research\ndata: {json.dumps(self.to_dict())}\n\n"


def audience_filter(
    viewer_id: Optional[int] = None,
    is_admin: bool = False,
    mine: bool = False,
) -> EventPredicate:
    """
    Build the visibility rule for one subscriber.

    The "mine" stream shows admins everything and other users only their own
    articles; the public stream shows only published articles.
    """

    def allows(event: ResearchUpdatedEvent) -> bool:
        if mine:
            if is_admin:
                return True
            return viewer_id is not None and event.author_user_id == viewer_id
        return event.is_published

    return allows


class Subscription:
    """
    Bounded per-subscriber buffer of events.

    When the buffer is full the oldest event is dropped, so a slow consumer
    never blocks the publisher.

    Usage:
        with bus.subscribe(audience_filter(mine=True, viewer_id=7)) as sub:
            async for event in sub:
                ...
    """

    def __init__(
        self,
        bus: "ResearchEventBus",
        predicate: Optional[EventPredicate] = None,
        max_size: int = 100,
    ):
        self._bus = bus
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def offer(self, event: ResearchUpdatedEvent) -> None:
        """Queue ``event`` if this subscriber may see it."""
        if self._closed:
            return
        if self._predicate is not None and not self._predicate(event):
            return
        self._put(event)

    async def get(self) -> Optional[ResearchUpdatedEvent]:
        """Wait for the next event; None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)
        self._put(None)  # Sentinel

    async def __aiter__(self) -> AsyncGenerator[ResearchUpdatedEvent, None]:
        while True:
            event = await self.get()
            if event is None:
                break
            yield event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class ResearchEventBus:
    """In-process fan-out of :class:`ResearchUpdatedEvent`."""

    def __init__(self, max_queue_size: Optional[int] = None):
        self.max_queue_size = max_queue_size or get_settings().research.event_queue_size
        self._subscriptions: list[Subscription] = []
        self._listeners: list[EventListener] = []

    def subscribe(self, predicate: Optional[EventPredicate] = None) -> Subscription:
        subscription = Subscription(self, predicate, self.max_queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Register a synchronous callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions) + len(self._listeners)

    def publish(self, event: ResearchUpdatedEvent) -> None:
        """Deliver ``event`` to every subscriber without blocking."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Research event listener failed for article {event.article_id}")

        for subscription in list(self._subscriptions):
            subscription.offer(event)
