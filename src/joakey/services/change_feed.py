"""Row-level change notifications for chat tables.

Writers publish a ``ChangeEvent`` after each committed insert, update or
delete. Readers subscribe to a table with an optional ``column=eq.value``
filter and receive matching events through an async iterator.

Two backends are provided: ``InMemoryChangeFeed`` for a single process and
``RedisChangeFeed`` which fans events out through Redis pub/sub so every
worker process sees every write.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any

import redis
import redis.asyncio as aioredis

from joakey.core.settings import settings
from joakey.db.time import utcnow

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "changes:"


class ChangeType(str, Enum):
    """Kinds of row changes carried by the feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """A single committed row change."""

    type: ChangeType
    table: str
    record: Mapping[str, Any] = field(default_factory=dict)
    old_record: Mapping[str, Any] | None = None
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def row_id(self) -> Any:
        """Return the identifier of the changed row, if the event carries one."""
        source = self.old_record if self.type is ChangeType.DELETE else self.record
        return (source or {}).get("id")

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "table": self.table,
            "record": dict(self.record),
            "old_record": dict(self.old_record) if self.old_record is not None else None,
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ChangeEvent:
        return cls(
            type=ChangeType(payload["type"]),
            table=payload["table"],
            record=payload.get("record") or {},
            old_record=payload.get("old_record"),
            commit_timestamp=datetime.fromisoformat(payload["commit_timestamp"]),
        )


@dataclass(frozen=True)
class FilterExpression:
    """Equality filter on one column, written ``column=eq.value``."""

    column: str
    value: str

    def matches(self, event: ChangeEvent) -> bool:
        for source in (event.record, event.old_record):
            if source and self.column in source:
                return str(source[self.column]) == self.value
        return False


def parse_filter(expression: str | None) -> FilterExpression | None:
    """Parse a ``column=eq.value`` filter; ``None`` or blank means no filter.

    Raises:
        ValueError: If the expression is malformed or uses another operator.
    """
    if expression is None or not expression.strip():
        return None
    column, sep, rest = expression.strip().partition("=")
    if not sep or not column:
        raise ValueError(f"Malformed filter expression: {expression!r}")
    operator, sep, value = rest.partition(".")
    if not sep:
        raise ValueError(f"Malformed filter expression: {expression!r}")
    if operator != "eq":
        raise ValueError(f"Unsupported filter operator: {operator!r}")
    return FilterExpression(column=column, value=value)


class Subscription:
    """Open subscription handing matching events to one consumer.

    Iterate with ``async for``; iteration ends once ``close()`` is called.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        filter_: FilterExpression | None,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.table = table
        self.filter = filter_
        self._feed = feed
        self._loop = loop
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        return self.filter is None or self.filter.matches(event)

    def deliver(self, event: ChangeEvent | None) -> None:
        """Queue an event; safe to call from any thread."""
        if self.closed and event is not None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(event)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def get(self) -> ChangeEvent | None:
        """Wait for the next event; ``None`` once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        """Release the subscription and wake any pending consumer."""
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self.deliver(None)


class ChangeFeed:
    """Base class for change feed backends."""

    def subscribe(self, table: str, filter_expression: str | None = None) -> Subscription:
        raise NotImplementedError

    def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError

    def publish(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release backend resources."""


class InMemoryChangeFeed(ChangeFeed):
    """Process-local feed; publishers and subscribers share one registry."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = Lock()

    def subscribe(self, table: str, filter_expression: str | None = None) -> Subscription:
        """Open a subscription; must be called from a running event loop."""
        subscription = Subscription(
            self,
            table,
            parse_filter(filter_expression),
            asyncio.get_running_loop(),
        )
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s (%s)", table, filter_expression or "*")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(event)]
        for subscription in targets:
            subscription.deliver(event)

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class RedisChangeFeed(ChangeFeed):
    """Feed that publishes through Redis and fans received events out locally."""

    def __init__(
        self,
        url: str,
        *,
        client: Any | None = None,
        async_client: Any | None = None,
    ) -> None:
        self._url = url
        self._redis = client if client is not None else redis.from_url(url)
        self._async_redis = async_client
        self._local = InMemoryChangeFeed()
        self._listener: asyncio.Task[None] | None = None

    @staticmethod
    def channel_for(table: str) -> str:
        return f"{CHANNEL_PREFIX}{table}"

    def subscribe(self, table: str, filter_expression: str | None = None) -> Subscription:
        subscription = self._local.subscribe(table, filter_expression)
        if self._listener is None or self._listener.done():
            self._listener = asyncio.get_running_loop().create_task(self._listen())
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._local.unsubscribe(subscription)

    def publish(self, event: ChangeEvent) -> None:
        payload = json.dumps(event.to_payload())
        try:
            self._redis.publish(self.channel_for(event.table), payload)
        except redis.RedisError as err:
            logger.warning("Redis publish failed, delivering locally only: %s", err)
            self._local.publish(event)

    async def _listen(self) -> None:
        if self._async_redis is None:
            self._async_redis = aioredis.from_url(self._url)
        while True:
            pubsub = self._async_redis.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    self._dispatch(message.get("data"))
            except asyncio.CancelledError:
                await pubsub.aclose()
                raise
            except (redis.RedisError, OSError) as err:
                logger.warning("Change feed listener lost Redis connection: %s", err)
                await pubsub.aclose()
                await asyncio.sleep(1.0)

    def _dispatch(self, data: Any) -> None:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            event = ChangeEvent.from_payload(json.loads(data))
        except (ValueError, TypeError, KeyError) as err:
            logger.error("Dropping malformed change event: %s", err, exc_info=True)
            return
        self._local.publish(event)

    async def aclose(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._async_redis is not None:
            await self._async_redis.aclose()


_FEED: ChangeFeed | None = None
_FEED_LOCK = Lock()


def get_change_feed() -> ChangeFeed:
    """Return the process-wide change feed selected by configuration."""
    global _FEED
    with _FEED_LOCK:
        if _FEED is None:
            if settings.change_feed_backend == "redis":
                _FEED = RedisChangeFeed(settings.redis_url)
            else:
                _FEED = InMemoryChangeFeed()
        return _FEED


def reset_change_feed(feed: ChangeFeed | None = None) -> None:
    """Replace the process-wide feed (used at shutdown and in tests)."""
    global _FEED
    with _FEED_LOCK:
        _FEED = feed
