"""Message write and read services.

Writes encrypt with the chat's codec, commit, and only then publish a change
event, so subscribers never observe a row that was rolled back. Every write
either returns the persisted row or raises; callers decide what the user sees.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from joakey.core.settings import settings
from joakey.db.time import utcnow
from joakey.models import MESSAGE_TYPES, Chat, Message
from joakey.repositories.chat_repo import ChatRepository
from joakey.services.change_feed import ChangeEvent, ChangeFeed, ChangeType, get_change_feed
from joakey.services.codec import ConversationCodec, codec_for_chat

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"

CodecFactory = Callable[[str], ConversationCodec]


@dataclass(frozen=True)
class MessageView:
    """Decrypted message as shown to one viewer."""

    id: str
    chat_id: str
    sender_id: str
    text: str
    type: str
    created_at: datetime | None
    edited: bool
    is_mine: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "text": self.text,
            "type": self.type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "edited": self.edited,
            "is_mine": self.is_mine,
        }


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def to_view(message: Message, codec: ConversationCodec, viewer_id: str) -> MessageView:
    """Decrypt an ORM message for a viewer."""
    return MessageView(
        id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        text=codec.decode(message.text),
        type=message.type,
        created_at=message.created_at,
        edited=message.updated_at is not None,
        is_mine=message.sender_id == viewer_id,
    )


def record_to_view(
    record: Mapping[str, Any],
    codec: ConversationCodec,
    viewer_id: str,
) -> MessageView:
    """Decrypt a change-event record for a viewer.

    Raises:
        KeyError: If the record lacks a required column.
        MessageDecryptionError: If the ciphertext cannot be read.
    """
    return MessageView(
        id=record["id"],
        chat_id=record["chat_id"],
        sender_id=record["sender_id"],
        text=codec.decrypt(record["text"]),
        type=record.get("type", "text"),
        created_at=_parse_timestamp(record.get("created_at")),
        edited=record.get("updated_at") is not None,
        is_mine=record["sender_id"] == viewer_id,
    )


def validate_message_text(text: str, *, max_length: int | None = None) -> str:
    """Return the text if it can be sent, otherwise raise ``ValueError``."""
    limit = max_length if max_length is not None else settings.max_message_length
    if not text or not text.strip():
        raise ValueError("Message text must not be empty")
    if len(text) > limit:
        raise ValueError(f"Message text exceeds {limit} characters")
    return text


class MessageService:
    """Encrypted message CRUD scoped to chats."""

    def __init__(
        self,
        db: Session,
        feed: ChangeFeed | None = None,
        codec_factory: CodecFactory = codec_for_chat,
    ) -> None:
        self.db = db
        self.repo = ChatRepository(db)
        self.feed = feed if feed is not None else get_change_feed()
        self.codec_factory = codec_factory

    def _publish(
        self,
        change: ChangeType,
        record: Mapping[str, Any],
        old_record: Mapping[str, Any] | None = None,
    ) -> None:
        self.feed.publish(
            ChangeEvent(type=change, table=MESSAGES_TABLE, record=record, old_record=old_record)
        )

    def _get_own_message(self, chat: Chat, message_id: str, sender_id: str) -> Message:
        message = self.repo.get_message(message_id)
        if message is None or message.chat_id != chat.id:
            raise LookupError("Message not found")
        if message.sender_id != sender_id:
            raise PermissionError("Only the sender can change this message")
        return message

    def send_message(
        self,
        chat: Chat,
        sender_id: str,
        text: str,
        message_type: str = "text",
    ) -> Message:
        """Encrypt and store a new message.

        Raises:
            PermissionError: If the sender is not part of the chat.
            ValueError: If the text or message type is invalid.
        """
        if not chat.has_participant(sender_id):
            raise PermissionError("Not a participant of this chat")
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"Unsupported message type: {message_type}")
        validate_message_text(text)

        message = Message(
            chat_id=chat.id,
            sender_id=sender_id,
            text=self.codec_factory(chat.id).encode(text),
            type=message_type,
        )
        self.repo.add_message(message)
        self.db.commit()
        logger.debug("Stored message %s in chat %s", message.id, chat.id)
        self._publish(ChangeType.INSERT, message.to_record())
        return message

    def edit_message(self, chat: Chat, message_id: str, sender_id: str, text: str) -> Message:
        """Replace the ciphertext of the sender's own message; the id is kept."""
        validate_message_text(text)
        message = self._get_own_message(chat, message_id, sender_id)
        old_record = message.to_record()
        message.text = self.codec_factory(chat.id).encode(text)
        message.updated_at = utcnow()
        self.db.commit()
        self._publish(ChangeType.UPDATE, message.to_record(), old_record)
        return message

    def delete_message(self, chat: Chat, message_id: str, sender_id: str) -> None:
        """Delete the sender's own message."""
        message = self._get_own_message(chat, message_id, sender_id)
        old_record = message.to_record()
        self.repo.delete_message(message)
        self.db.commit()
        self._publish(ChangeType.DELETE, {}, old_record)

    def list_messages(self, chat_id: str) -> list[Message]:
        """Return stored messages oldest first."""
        return self.repo.list_messages(chat_id)

    def list_views(self, chat_id: str, viewer_id: str) -> list[MessageView]:
        """Return decrypted messages oldest first for a viewer."""
        codec = self.codec_factory(chat_id)
        return [to_view(message, codec, viewer_id) for message in self.list_messages(chat_id)]
