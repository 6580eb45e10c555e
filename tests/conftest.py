# tests/conftest.py
from __future__ import annotations

import uuid
from collections.abc import Generator, Iterator
from contextlib import nullcontext

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from joakey.api.v1.dependencies import get_change_feed_dep, get_session_factory
from joakey.core.security import create_access_token
from joakey.db.session import Base
from joakey.db.session import get_db as app_get_session
from joakey.main import app as fastapi_app
from joakey.models import ROLE_BUYER, ROLE_JOCKEY, Chat, Profile, pair_key
from joakey.services.change_feed import InMemoryChangeFeed

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def feed() -> InMemoryChangeFeed:
    """Return a change feed private to the test."""
    return InMemoryChangeFeed()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    feed: InMemoryChangeFeed,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_change_feed_dep] = lambda: feed
    app.dependency_overrides[get_session_factory] = lambda: (lambda: nullcontext(db_session))
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def make_profile(db: Session, name: str, role: str = ROLE_BUYER) -> Profile:
    """Persist a profile with a random identifier."""
    profile = Profile(
        id=str(uuid.uuid4()),
        name=name,
        username=f"{name.lower().replace(' ', '_')}_{uuid.uuid4().hex[:6]}",
        profile_image_url=None,
        role=role,
    )
    db.add(profile)
    db.flush()
    return profile


@pytest.fixture()
def buyer(db_session: Session) -> Profile:
    """Create the buyer side of a conversation."""
    return make_profile(db_session, "Budi", ROLE_BUYER)


@pytest.fixture()
def jockey(db_session: Session) -> Profile:
    """Create the jockey side of a conversation."""
    return make_profile(db_session, "Rangga", ROLE_JOCKEY)


@pytest.fixture()
def outsider(db_session: Session) -> Profile:
    """Create a profile that belongs to no chat."""
    return make_profile(db_session, "Sari", ROLE_BUYER)


@pytest.fixture()
def chat(db_session: Session, buyer: Profile, jockey: Profile) -> Chat:
    """Create the chat between buyer and jockey."""
    chat = Chat(user1_id=buyer.id, user2_id=jockey.id, pair_key=pair_key(buyer.id, jockey.id))
    db_session.add(chat)
    db_session.flush()
    return chat


def auth_headers(profile: Profile) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


@pytest.fixture()
def buyer_headers(buyer: Profile) -> dict[str, str]:
    """Return authorization headers for the buyer."""
    return auth_headers(buyer)


@pytest.fixture()
def jockey_headers(jockey: Profile) -> dict[str, str]:
    """Return authorization headers for the jockey."""
    return auth_headers(jockey)


@pytest.fixture()
def outsider_headers(outsider: Profile) -> dict[str, str]:
    """Return authorization headers for the outsider."""
    return auth_headers(outsider)
