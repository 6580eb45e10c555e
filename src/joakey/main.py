# src/joakey/main.py
"""Main entry point for the Joakey chat service."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from joakey.api.v1 import chats_router, orders_router
from joakey.core.settings import settings
from joakey.services.change_feed import get_change_feed, reset_change_feed

# Initialize FastAPI app
app = FastAPI(
    title="Joakey Chat API",
    description="Encrypted buyer/jockey chat with realtime synchronization",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(chats_router, prefix="/api/v1")
app.include_router(orders_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    app.state.change_feed = get_change_feed()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    feed = getattr(app.state, "change_feed", None)
    if feed is not None:
        await feed.aclose()
    reset_change_feed()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Encrypted buyer/jockey chat with realtime synchronization",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("joakey.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
