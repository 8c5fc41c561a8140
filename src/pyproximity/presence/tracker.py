"""Presence feed interface and an in-process implementation.

The presence feed is an external collaborator that tells us where a
counterpart last was and when they last sent a heartbeat.  pyproximity
only reads it; whether the counterpart counts as online is decided by the
mode policy, not by the feed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping
from typing import Any, Protocol

from pyproximity.exceptions import SubscriptionFailureError
from pyproximity.models.presence import PresenceUpdate, parse_presence_payload

_logger = logging.getLogger(__name__)


class PresenceTracker(Protocol):
    """Structural presence feed interface.

    ``subscribe`` returns an async generator of snapshots for one user.
    Closing the generator (``aclose()``) unsubscribes.  Transport failures
    that the adapter gives up on surface as
    :class:`~pyproximity.exceptions.SubscriptionFailureError`.
    """

    def subscribe(self, user_id: str) -> AsyncGenerator[PresenceUpdate, None]:
        ...


class InMemoryPresenceTracker:
    """Presence feed backed by in-process queues.

    Useful for embedding applications that already receive presence
    documents through their own channel, and for tests.  New subscribers
    receive the latest known snapshot first, mirroring document-listener
    semantics.
    """

    def __init__(self, *, max_queue: int = 16) -> None:
        self._max_queue = max(1, max_queue)
        self._subscribers: dict[str, set[asyncio.Queue[PresenceUpdate | BaseException]]] = {}
        self._latest: dict[str, PresenceUpdate] = {}

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    def latest(self, user_id: str) -> PresenceUpdate | None:
        return self._latest.get(user_id)

    def _offer(self, queue: asyncio.Queue[PresenceUpdate | BaseException], item: PresenceUpdate | BaseException) -> None:
        # Presence is last-writer-wins: a slow subscriber loses the oldest snapshot.
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        queue.put_nowait(item)

    def publish(self, user_id: str, update: PresenceUpdate | Mapping[str, Any] | None) -> PresenceUpdate:
        """Publish a snapshot (model or raw document) for *user_id*."""
        if isinstance(update, PresenceUpdate):
            snapshot = update if update.user_id == user_id else update.model_copy(update={"user_id": user_id})
        else:
            snapshot = parse_presence_payload(update, user_id=user_id)
        self._latest[user_id] = snapshot
        for queue in self._subscribers.get(user_id, ()):
            self._offer(queue, snapshot)
        return snapshot

    def fail(self, user_id: str, message: str = "presence feed failed") -> None:
        """Terminate every subscription for *user_id* with a failure."""
        error = SubscriptionFailureError(message, user_id=user_id)
        for queue in self._subscribers.get(user_id, ()):
            self._offer(queue, error)

    async def subscribe(self, user_id: str) -> AsyncGenerator[PresenceUpdate, None]:
        queue: asyncio.Queue[PresenceUpdate | BaseException] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.setdefault(user_id, set()).add(queue)
        _logger.debug("Presence subscribe user=%s", user_id)
        try:
            latest = self._latest.get(user_id)
            if latest is not None:
                yield latest
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            subscribers = self._subscribers.get(user_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[user_id]
            _logger.debug("Presence unsubscribe user=%s", user_id)
