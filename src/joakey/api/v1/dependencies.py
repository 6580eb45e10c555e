"""Shared API dependencies for authentication and common functionality."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from joakey.core.security import decode_participant_id
from joakey.db.session import SessionLocal, get_db
from joakey.models import Profile
from joakey.services.change_feed import ChangeFeed, get_change_feed

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_change_feed_dep() -> ChangeFeed:
    """Return the shared change feed."""
    return get_change_feed()


ChangeFeedDep = Annotated[ChangeFeed, Depends(get_change_feed_dep)]


def get_session_factory() -> Callable[[], Session]:
    """Return the factory used by long-lived consumers to open short sessions."""
    return SessionLocal


SessionFactoryDep = Annotated[Callable[[], Session], Depends(get_session_factory)]


def resolve_participant(token: str, db: Session) -> Profile:
    """Return the profile behind a bearer token.

    Raises:
        HTTPException: If the token is invalid or the profile does not exist.
    """
    try:
        participant_id = decode_participant_id(token)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    profile = db.get(Profile, participant_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return profile


def get_current_participant(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> Profile:
    """Get the authenticated participant from the bearer token."""
    return resolve_participant(credentials.credentials, db)


# Type alias for current participant dependency
CurrentParticipantDep = Annotated[Profile, Depends(get_current_participant)]
