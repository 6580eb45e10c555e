"""Bearer token helpers identifying the calling participant."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from joakey.core.settings import settings


def create_access_token(participant_id: str, expires_delta: timedelta | None = None) -> str:
    """Return a signed JWT whose subject is the participant identifier."""
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": participant_id, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_participant_id(token: str) -> str:
    """Return the participant identifier carried by a token.

    Raises:
        ValueError: If the token is invalid, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise ValueError("Could not validate credentials") from err
    subject = payload.get("sub")
    if not subject:
        raise ValueError("Could not validate credentials")
    return str(subject)
