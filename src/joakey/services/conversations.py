"""Conversation lookup and lazy creation."""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from joakey.models import Chat
from joakey.repositories.chat_repo import ChatRepository

logger = logging.getLogger(__name__)

__all__ = ["resolve_conversation", "require_participant", "get_chat_for_participant"]


def resolve_conversation(db: Session, participant_id: str, peer_id: str) -> Chat:
    """Return the chat between two participants, creating it on first contact.

    The lookup is order independent, so ``(a, b)`` and ``(b, a)`` resolve to the
    same row. When both sides create the chat at the same moment, the loser of
    the unique ``pair_key`` race re-reads the winner's row.

    Args:
        db: Database session.
        participant_id: The caller's profile identifier.
        peer_id: The other participant's profile identifier.

    Returns:
        The persisted chat.

    Raises:
        ValueError: If either identifier is missing or both are the same.
        LookupError: If either profile does not exist.
    """
    if not participant_id or not peer_id:
        raise ValueError("Both participant identifiers are required")
    if participant_id == peer_id:
        raise ValueError("Cannot open a chat with yourself")

    repo = ChatRepository(db)
    for profile_id in (participant_id, peer_id):
        if repo.get_profile(profile_id) is None:
            raise LookupError(f"Profile {profile_id} not found")

    existing = repo.find_chat_for_pair(participant_id, peer_id)
    if existing is not None:
        return existing

    try:
        with db.begin_nested():
            chat = repo.create_chat(participant_id, peer_id)
    except IntegrityError:
        logger.info("Chat for %s/%s created concurrently; reusing it", participant_id, peer_id)
        chat = repo.find_chat_for_pair(participant_id, peer_id)
        if chat is None:
            raise
    db.commit()
    return chat


def require_participant(chat: Chat, participant_id: str) -> None:
    """Raise ``PermissionError`` unless the participant belongs to the chat."""
    if not chat.has_participant(participant_id):
        raise PermissionError("Not a participant of this chat")


def get_chat_for_participant(db: Session, chat_id: str, participant_id: str) -> Chat:
    """Load a chat and check membership.

    Raises:
        LookupError: If the chat does not exist.
        PermissionError: If the participant is not part of it.
    """
    chat = ChatRepository(db).get_chat(chat_id)
    if chat is None:
        raise LookupError("Chat not found")
    require_participant(chat, participant_id)
    return chat
