# src/joakey/models/chat.py
"""Models describing conversations between two participants."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from joakey.db.session import Base
from joakey.db.time import utcnow


def pair_key(first_id: str, second_id: str) -> str:
    """Return the order-independent key for a pair of participants."""
    low, high = sorted((first_id, second_id))
    return f"{low}:{high}"


class Chat(Base):
    """Conversation pairing exactly two participants.

    Rows are created lazily on first contact and never updated afterwards.
    """

    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user1_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    user2_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    # Unique over the unordered pair so concurrent first contact cannot fork a chat.
    pair_key: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    @property
    def participants(self) -> tuple[str, str]:
        """Return both participant identifiers."""
        return (self.user1_id, self.user2_id)

    def has_participant(self, participant_id: str) -> bool:
        """Return True if the participant belongs to this chat."""
        return participant_id in self.participants

    def peer_of(self, participant_id: str) -> str:
        """Return the other participant's identifier."""
        if participant_id == self.user1_id:
            return self.user2_id
        if participant_id == self.user2_id:
            return self.user1_id
        raise PermissionError("Participant is not part of this chat")
