"""Per-conversation synchronization between the change feed and a chat view.

A ``ChatSynchronizer`` holds one subscription scoped to ``chat_id=eq.<id>``
and keeps an ordered, decrypted snapshot of the conversation. With the
``reload`` strategy every event triggers a full re-fetch that replaces the
snapshot. The ``incremental`` strategy patches the changed row by id and
falls back to a full re-fetch whenever an event cannot be applied cleanly.

Fetches that finish after ``close()`` or after a newer fetch was started are
discarded, so a slow response can never overwrite fresher state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from joakey.core.settings import settings
from joakey.services.change_feed import ChangeEvent, ChangeFeed, ChangeType, Subscription
from joakey.services.codec import ConversationCodec, MessageDecryptionError, codec_for_chat
from joakey.services.messages import (
    MESSAGES_TABLE,
    CodecFactory,
    MessageService,
    MessageView,
    record_to_view,
)

logger = logging.getLogger(__name__)

SnapshotLoader = Callable[[], list[MessageView] | Awaitable[list[MessageView]]]
ChangeListener = Callable[[list[MessageView]], Awaitable[None] | None]


class SyncState(str, Enum):
    """Lifecycle of a conversation view."""

    UNINITIALIZED = "uninitialized"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class _AmbiguousEvent(Exception):
    """Raised internally when an event cannot be applied incrementally."""


def _sort_key(view: MessageView) -> tuple[datetime, str]:
    created = view.created_at or datetime.min
    if created.tzinfo is not None:
        created = created.astimezone(UTC).replace(tzinfo=None)
    return (created, view.id)


def build_snapshot_loader(
    session_factory: Callable[[], Session],
    chat_id: str,
    participant_id: str,
    codec_factory: CodecFactory = codec_for_chat,
) -> Callable[[], list[MessageView]]:
    """Return a blocking loader that opens a session and reads the chat."""

    def load() -> list[MessageView]:
        with session_factory() as db:
            service = MessageService(db, feed=_NullFeed(), codec_factory=codec_factory)
            return service.list_views(chat_id, participant_id)

    return load


class _NullFeed(ChangeFeed):
    """Feed used by read-only services that never publish."""

    def publish(self, event: ChangeEvent) -> None:
        raise RuntimeError("Read-only loader cannot publish changes")


class ChatSynchronizer:
    """Keeps one participant's view of one chat in step with the database."""

    def __init__(
        self,
        chat_id: str,
        participant_id: str,
        *,
        loader: SnapshotLoader,
        feed: ChangeFeed,
        codec: ConversationCodec | None = None,
        strategy: str | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.participant_id = participant_id
        self.strategy = strategy or settings.chat_sync_strategy
        if self.strategy not in ("reload", "incremental"):
            raise ValueError(f"Unknown sync strategy: {self.strategy}")
        self._loader = loader
        self._feed = feed
        self._codec = codec
        self._listeners: list[ChangeListener] = []
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._generation = 0
        self.state = SyncState.UNINITIALIZED
        self.messages: list[MessageView] = []
        self.reload_count = 0

    @property
    def codec(self) -> ConversationCodec:
        if self._codec is None:
            self._codec = codec_for_chat(self.chat_id)
        return self._codec

    def on_change(self, listener: ChangeListener) -> None:
        """Register a callback receiving every new snapshot."""
        self._listeners.append(listener)

    async def open(self) -> list[MessageView]:
        """Subscribe to the chat, load the first snapshot and start listening.

        Raises:
            ValueError: If the participant or chat id is missing.
            RuntimeError: If the synchronizer was already opened.
        """
        if not self.participant_id or not self.chat_id:
            raise ValueError("A participant and a chat id are required to open a chat")
        if self.state is not SyncState.UNINITIALIZED:
            raise RuntimeError(f"Cannot open a synchronizer in state {self.state.value}")

        self._subscription = self._feed.subscribe(MESSAGES_TABLE, f"chat_id=eq.{self.chat_id}")
        self.state = SyncState.SUBSCRIBED
        await self.refresh()
        self._consumer = asyncio.create_task(self._consume())
        return self.messages

    async def close(self) -> None:
        """Cancel the subscription; later fetch results are ignored."""
        if self.state is SyncState.CLOSED:
            return
        self.state = SyncState.CLOSED
        if self._subscription is not None:
            self._subscription.close()
        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("Consumer for chat %s ended with an error", self.chat_id, exc_info=True)

    async def __aenter__(self) -> ChatSynchronizer:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def refresh(self) -> bool:
        """Re-fetch the full ordered list and replace the snapshot.

        Returns:
            True if the snapshot was applied, False if it was stale.
        """
        self._generation += 1
        generation = self._generation
        if inspect.iscoroutinefunction(self._loader):
            rows = await self._loader()
        else:
            rows = await asyncio.to_thread(self._loader)
        if self.state is SyncState.CLOSED or generation != self._generation:
            logger.debug("Discarding stale snapshot for chat %s", self.chat_id)
            return False
        self.reload_count += 1
        await self._replace(sorted(rows, key=_sort_key))
        return True

    async def handle_event(self, event: ChangeEvent) -> None:
        """Bring the snapshot up to date after one change event."""
        if self.state is not SyncState.SUBSCRIBED:
            return
        if self.strategy == "incremental":
            try:
                updated = self._apply(event)
            except _AmbiguousEvent as err:
                logger.debug("Falling back to reload for chat %s: %s", self.chat_id, err)
            else:
                self._generation += 1
                await self._replace(updated)
                return
        await self.refresh()

    def _apply(self, event: ChangeEvent) -> list[MessageView]:
        row_id = event.row_id
        if row_id is None:
            raise _AmbiguousEvent("event carries no row id")
        current = list(self.messages)
        index = next((i for i, view in enumerate(current) if view.id == row_id), None)

        if event.type is ChangeType.DELETE:
            if index is None:
                raise _AmbiguousEvent(f"deleted row {row_id} is not in the snapshot")
            del current[index]
            return current

        if event.type is ChangeType.UPDATE and index is None:
            raise _AmbiguousEvent(f"updated row {row_id} is not in the snapshot")
        try:
            view = record_to_view(event.record, self.codec, self.participant_id)
        except (KeyError, ValueError, MessageDecryptionError) as err:
            raise _AmbiguousEvent(str(err)) from err
        if view.created_at is None:
            raise _AmbiguousEvent(f"row {row_id} has no creation time")
        if index is None:
            current.append(view)
        else:
            current[index] = view
        return sorted(current, key=_sort_key)

    async def _replace(self, rows: list[MessageView]) -> None:
        self.messages = rows
        for listener in list(self._listeners):
            result = listener(list(rows))
            if inspect.isawaitable(result):
                await result

    async def _consume(self) -> None:
        subscription = self._subscription
        if subscription is None:
            return
        async for event in subscription:
            try:
                await self.handle_event(event)
            except (OSError, ValueError, SQLAlchemyError) as err:
                logger.warning("Failed to synchronize chat %s: %s", self.chat_id, err)
            except Exception:
                logger.error("Unexpected error synchronizing chat %s", self.chat_id, exc_info=True)
