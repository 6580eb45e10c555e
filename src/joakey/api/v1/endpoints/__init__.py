# src/joakey/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .chats import router as chats_router
from .orders import router as orders_router

__all__ = [
    "chats_router",
    "orders_router",
]
