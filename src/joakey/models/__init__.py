# src/joakey/models/__init__.py
"""SQLAlchemy models for the Joakey chat service."""

from .chat import Chat, pair_key
from .message import MESSAGE_TYPES, Message
from .profile import ROLE_BUYER, ROLE_JOCKEY, Profile

__all__ = [
    "Chat", "pair_key",
    "Message", "MESSAGE_TYPES",
    "Profile", "ROLE_BUYER", "ROLE_JOCKEY",
]
