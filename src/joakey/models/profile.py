# src/joakey/models/profile.py
"""Read-side model of marketplace profiles."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from joakey.db.session import Base
from joakey.db.time import utcnow

ROLE_BUYER = "buyer"
ROLE_JOCKEY = "jockey"


class Profile(Base):
    """Public profile of a participant (buyer or jockey).

    Profiles are created and edited elsewhere; the chat service only reads
    them to label conversations and to validate peers.
    """

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("role IN ('buyer', 'jockey')", name="ck_profiles_role"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    profile_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_BUYER)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    @property
    def initial(self) -> str:
        """Return the avatar fallback letter."""
        return self.name[:1].upper() if self.name else "?"
