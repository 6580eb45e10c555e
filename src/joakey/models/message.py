# src/joakey/models/message.py
"""Models describing chat messages."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from joakey.db.session import Base
from joakey.db.time import utcnow

MESSAGE_TYPES = ("text", "image", "video")


class Message(Base):
    """Encrypted message posted into a chat.

    Only ciphertext is stored; the codec for the owning chat turns it back
    into text when a participant reads it.
    """

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("type IN ('text', 'image', 'video')", name="ck_messages_type"),
        Index("ix_messages_chat_id_created_at", "chat_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    chat_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_record(self) -> dict[str, Any]:
        """Return the row as a plain mapping for change notifications."""
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "text": self.text,
            "type": self.type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
