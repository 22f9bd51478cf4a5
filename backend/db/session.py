"""
Scoped storage handles.

A Session is acquired per execution unit (one request, one CLI command) and
released on every exit path. Nothing here is a process-wide singleton: the
session factory lives on the app state and is passed down explicitly.

Usage:
    with session_scope(factory) as session:
        session.add(thing)
    # committed on normal exit, rolled back on any exception, always closed
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from flask import g
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

log = logging.getLogger(__name__)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Entities stay readable after commit so mappers can run post-commit
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


def request_session() -> Session:
    """
    Session bound to the current request.

    Opened lazily on first use and closed by release_request_session(),
    which create_app() registers as a teardown handler.
    """
    session = g.get("db_session")
    if session is None:
        from api.extension import get_state
        session = get_state().session_factory()
        g.db_session = session
    return session


def release_request_session(exc=None) -> None:
    """
    Teardown handler. Services commit their own writes; anything still
    uncommitted when the request ends is rolled back.
    """
    session = g.pop("db_session", None)
    if session is None:
        return
    try:
        session.rollback()
    finally:
        session.close()
