"""Engine and session factory for the local backend.

The URL comes from ``RURALINK_DATABASE_URL`` (or ``DATABASE_URL``) and
defaults to ``sqlite:///./ruralink.db`` next to the working directory.
``RURALINK_DB_ECHO=1`` logs every statement. Heroku-style ``postgres://``
URLs are rewritten for the psycopg 3 driver (``pip install ruralink[postgres]``).
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import ruralink.config  # noqa: F401  (.env must be loaded before the URL is read)

LOGGER = logging.getLogger(__name__)

DEFAULT_URL = "sqlite:///./ruralink.db"


def database_url() -> str:
    url = os.getenv("RURALINK_DATABASE_URL") or os.getenv("DATABASE_URL") or DEFAULT_URL
    for legacy in ("postgres://", "postgresql://"):
        if url.startswith(legacy):
            return "postgresql+psycopg://" + url[len(legacy):]
    return url


def make_engine(url: Optional[str] = None) -> Engine:
    url = url or database_url()
    echo = os.getenv("RURALINK_DB_ECHO", "0") == "1"
    if url.startswith("sqlite"):
        # the auth flow reads from worker threads
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


ENGINE: Engine = make_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session and close it afterwards; callers commit."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def current_engine_url() -> str:
    return ENGINE.url.render_as_string(hide_password=True)


def check_connection() -> bool:
    try:
        with ENGINE.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        LOGGER.error("database unreachable at %s: %s", current_engine_url(), e)
        return False
    return True
