"""In-process push subscriptions (pending buzzes, chat messages, chat lists).

Producers call `LiveHub.reserve_version()` *before* reading the state they are
about to publish, then `publish(topic, snapshot, version=...)`. A subscription
drops anything older than what it already accepted, so two producers racing
each other can never make a consumer go back in time. Queues are bounded; when
one is full the oldest undelivered snapshot is discarded (the newer one
supersedes it anyway).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Generic, TypeVar


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_CLOSED = object()


def pending_buzzes_topic(user_id: str) -> str:
    return f"buzzes:pending:{user_id}"


def chat_messages_topic(chat_id: str) -> str:
    return f"chats:messages:{chat_id}"


def user_chats_topic(user_id: str) -> str:
    return f"chats:user:{user_id}"


def nearby_topic(user_id: str) -> str:
    return f"locations:nearby:{user_id}"


class Subscription(Generic[_T]):
    """Consumer handle: iterate with `async for`, end with `close()`."""

    def __init__(
        self, hub: "LiveHub", topic: str, *, owner: str | None, maxsize: int
    ) -> None:
        self._hub = hub
        self.topic = topic
        self.owner = owner
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, maxsize))
        self._last_version = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_version(self) -> int:
        return self._last_version

    def offer(self, version: int, snapshot: _T) -> bool:
        if self._closed or version <= self._last_version:
            return False
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)
        self._last_version = version
        return True

    async def get(self) -> _T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> "Subscription[_T]":
        return self

    async def __anext__(self) -> _T:
        return await self.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._discard(self)  # noqa: SLF001
        # Drop whatever is queued and wake a consumer blocked in get().
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> "Subscription[_T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class LiveHub:
    def __init__(self, *, maxsize: int = 16) -> None:
        self._maxsize = maxsize
        self._topics: dict[str, set[Subscription[Any]]] = {}
        self._versions = itertools.count(1)

    def reserve_version(self) -> int:
        return next(self._versions)

    def subscribe(self, topic: str, *, owner: str | None = None) -> Subscription[Any]:
        sub: Subscription[Any] = Subscription(
            self, topic, owner=owner, maxsize=self._maxsize
        )
        self._topics.setdefault(topic, set()).add(sub)
        return sub

    def publish(self, topic: str, snapshot: Any, *, version: int | None = None) -> int:
        """Offer snapshot to every subscriber of topic; return how many accepted it."""

        subs = self._topics.get(topic)
        if not subs:
            return 0
        if version is None:
            version = self.reserve_version()
        delivered = 0
        for sub in list(subs):
            if sub.offer(version, snapshot):
                delivered += 1
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def close_owner(self, owner: str) -> int:
        """Close every subscription held by owner (e.g. on logout)."""

        victims = [
            sub for subs in self._topics.values() for sub in subs if sub.owner == owner
        ]
        for sub in victims:
            sub.close()
        if victims:
            logger.info("Closed %d live subscriptions for user=%s", len(victims), owner)
        return len(victims)

    def close_all(self) -> None:
        for subs in list(self._topics.values()):
            for sub in list(subs):
                sub.close()

    def _discard(self, sub: Subscription[Any]) -> None:
        subs = self._topics.get(sub.topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            self._topics.pop(sub.topic, None)
