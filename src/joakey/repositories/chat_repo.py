"""Data access helpers for chats, messages and profiles."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from joakey.models import Chat, Message, Profile, pair_key

__all__ = ["ChatRepository"]


class ChatRepository:
    """Thin wrapper around database access for chat entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_profile(self, profile_id: str) -> Profile | None:
        """Return a profile by identifier."""
        return self.session.get(Profile, profile_id)

    def get_chat(self, chat_id: str) -> Chat | None:
        """Return a chat by identifier."""
        return self.session.get(Chat, chat_id)

    def find_chat_for_pair(self, first_id: str, second_id: str) -> Chat | None:
        """Return the chat between two participants, in either order."""
        result = self.session.execute(
            select(Chat).where(Chat.pair_key == pair_key(first_id, second_id))
        )
        return result.scalars().first()

    def create_chat(self, first_id: str, second_id: str) -> Chat:
        """Insert a chat for the pair and flush it.

        Raises:
            sqlalchemy.exc.IntegrityError: If the pair already has a chat.
        """
        chat = Chat(
            user1_id=first_id,
            user2_id=second_id,
            pair_key=pair_key(first_id, second_id),
        )
        self.session.add(chat)
        self.session.flush()
        return chat

    def get_message(self, message_id: str) -> Message | None:
        """Return a message by identifier."""
        return self.session.get(Message, message_id)

    def list_messages(self, chat_id: str) -> list[Message]:
        """Return the chat's messages oldest first, ties broken by identifier."""
        result = self.session.execute(
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        return list(result.scalars())

    def add_message(self, message: Message) -> Message:
        """Insert a message and flush it."""
        self.session.add(message)
        self.session.flush()
        return message

    def delete_message(self, message: Message) -> None:
        """Remove a message and flush the deletion."""
        self.session.delete(message)
        self.session.flush()
