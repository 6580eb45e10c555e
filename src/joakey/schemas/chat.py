"""Chat-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatOpenRequest(BaseModel):
    """Request to open (find or create) a chat with another participant."""

    peer_id: str = Field(..., min_length=1, description="Profile identifier of the other participant")


class ProfileSummary(BaseModel):
    """Public profile fields shown in the chat header."""

    id: str
    name: str
    username: str
    profile_image_url: str | None = None
    role: str
    initial: str

    model_config = ConfigDict(from_attributes=True)


class ChatResponse(BaseModel):
    """Schema for a resolved chat."""

    id: str
    user1_id: str
    user2_id: str
    created_at: datetime | None
    peer: ProfileSummary | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageCreate(BaseModel):
    """Schema for sending a message."""

    text: str = Field(..., description="Plain message text; encrypted before storage")
    type: Literal["text", "image", "video"] = Field("text", description="Content type tag")


class MessageUpdate(BaseModel):
    """Schema for editing a message."""

    text: str = Field(..., description="Replacement message text")


class MessageResponse(BaseModel):
    """Decrypted message returned to a participant."""

    id: str
    chat_id: str
    sender_id: str
    text: str
    type: str
    created_at: datetime | None
    edited: bool
    is_mine: bool

    model_config = ConfigDict(from_attributes=True)
