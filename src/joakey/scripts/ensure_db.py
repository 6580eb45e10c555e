"""Create the configured database (Postgres) and the chat tables."""
from __future__ import annotations

import argparse
import logging
import sys
from urllib.parse import urlsplit, urlunsplit

import psycopg
from psycopg import sql
from sqlalchemy import create_engine

from joakey.core.settings import settings
from joakey.db.session import Base

logger = logging.getLogger(__name__)


def to_psycopg_url(uri: str) -> str:
    """Strip quotes and the SQLAlchemy driver suffix from a Postgres URL."""
    uri = (uri or "").strip().strip("'\"")
    if not uri:
        raise ValueError("DATABASE_URL is empty")
    parts = urlsplit(uri)
    scheme = "postgresql" if parts.scheme.startswith("postgresql") else parts.scheme
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


def maintenance_url(db_url: str) -> tuple[str, str]:
    """Return ``(url of the postgres maintenance db, target database name)``."""
    parts = urlsplit(to_psycopg_url(db_url))
    if parts.scheme != "postgresql":
        raise ValueError(f"Not a Postgres URL: {db_url!r}")
    target = parts.path.lstrip("/") or "postgres"
    admin = urlunsplit(("postgresql", parts.netloc, "/postgres", parts.query, ""))
    return admin, target


def ensure_database_exists(db_url: str) -> bool:
    """Create the target Postgres database if missing; return True if created."""
    admin_url, target = maintenance_url(db_url)
    with psycopg.connect(admin_url, autocommit=True) as conn, conn.cursor() as cur:
        cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (target,))
        if cur.fetchone() is not None:
            logger.info("Database %s already exists", target)
            return False
        cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(target)))
    logger.info("Created database %s", target)
    return True


def create_schema(db_url: str) -> None:
    """Create every chat table on the given database."""
    engine = create_engine(db_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ensure the chat database and tables exist")
    parser.add_argument("--url", default=None, help="Override the configured database URL")
    parser.add_argument(
        "--skip-create-db",
        action="store_true",
        help="Only create tables; do not try to create the Postgres database",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="[ensure_db] %(message)s")

    db_url = args.url or settings.database_url_sync
    try:
        if db_url.startswith("postgresql") and not args.skip_create_db:
            ensure_database_exists(db_url)
        create_schema(db_url)
    except (ValueError, psycopg.Error, OSError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
