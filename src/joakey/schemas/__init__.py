"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .chat import (
    ChatOpenRequest,
    ChatResponse,
    MessageCreate,
    MessageResponse,
    MessageUpdate,
    ProfileSummary,
)
from .order import OrderSummaryResponse

__all__ = [
    "ChatOpenRequest", "ChatResponse", "ProfileSummary",
    "MessageCreate", "MessageResponse", "MessageUpdate",
    "OrderSummaryResponse",
]
