"""
Global serialization point for migration runs.

PostgreSQL: session-level advisory lock held on a dedicated connection for
the whole run (released explicitly, and by the server on disconnect).

Other engines: a single-row lock table (insert wins, IntegrityError means
someone else holds it), plus an in-process lock so threads of one process
queue up instead of polling the table.

Acquisition is bounded: after `timeout` seconds a MigrationFailure is raised
and nothing has been touched.
"""

import logging
import os
import socket
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import delete, insert, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from errors import MigrationFailure

from .ledger import ensure_ledger, lock_table


logger = logging.getLogger('migrations.lock')

# Fixed advisory lock id shared by every migration runner of this project
MIGRATION_LOCK_ID = 728301945  # hash('lockstep_migrations') % (2**31)
LOCK_ROW_ID = 1

_PROCESS_LOCK = threading.Lock()


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{threading.get_ident()}"


class MigrationLock:
    def __init__(self, engine: Engine, timeout: float = 30.0, poll_interval: float = 0.2, holder: Optional[str] = None):
        self.engine = engine
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.holder = (holder or default_holder())[:128]

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self.engine.dialect.name == "postgresql":
            with self._advisory_lock():
                yield
            return

        if not _PROCESS_LOCK.acquire(timeout=self.timeout):
            raise MigrationFailure(f"Timed out after {self.timeout:.0f}s waiting for the migration lock")
        try:
            with self._row_lock():
                yield
        finally:
            _PROCESS_LOCK.release()

    @contextmanager
    def _advisory_lock(self) -> Iterator[None]:
        conn = self.engine.connect()
        try:
            deadline = time.monotonic() + self.timeout
            while True:
                acquired = conn.execute(
                    text("SELECT pg_try_advisory_lock(:id)"), {"id": MIGRATION_LOCK_ID}
                ).scalar()
                conn.commit()
                if acquired:
                    break
                if time.monotonic() >= deadline:
                    raise MigrationFailure(
                        f"Timed out after {self.timeout:.0f}s waiting for the migration lock"
                    )
                time.sleep(self.poll_interval)

            logger.info("migration_lock_acquired kind=advisory id=%d", MIGRATION_LOCK_ID)
            try:
                yield
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": MIGRATION_LOCK_ID})
                conn.commit()
                logger.info("migration_lock_released kind=advisory")
        finally:
            conn.close()

    @contextmanager
    def _row_lock(self) -> Iterator[None]:
        with self.engine.begin() as conn:
            ensure_ledger(conn)

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                with self.engine.begin() as conn:
                    conn.execute(insert(lock_table).values(
                        id=LOCK_ROW_ID,
                        holder=self.holder,
                        acquired_at=datetime.now(timezone.utc),
                    ))
                break
            except IntegrityError:
                if time.monotonic() >= deadline:
                    raise MigrationFailure(
                        f"Timed out after {self.timeout:.0f}s waiting for the migration lock "
                        f"(held by {current_holder(self.engine) or 'unknown'}); "
                        "if that runner is gone, release it with `migrate unlock`"
                    )
                time.sleep(self.poll_interval)

        logger.info("migration_lock_acquired kind=row holder=%s", self.holder)
        try:
            yield
        finally:
            with self.engine.begin() as conn:
                conn.execute(delete(lock_table).where(
                    lock_table.c.id == LOCK_ROW_ID,
                    lock_table.c.holder == self.holder,
                ))
            logger.info("migration_lock_released kind=row holder=%s", self.holder)


def current_holder(engine: Engine) -> Optional[str]:
    """Holder of the lock row, if any (lock-table engines only)."""
    with engine.connect() as conn:
        if not conn.dialect.has_table(conn, lock_table.name):
            return None
        return conn.execute(select(lock_table.c.holder).where(lock_table.c.id == LOCK_ROW_ID)).scalar()


def force_unlock(engine: Engine) -> bool:
    """
    Operator escape hatch: drop a lock row left behind by a dead runner.

    Advisory locks die with their session, so this is a no-op on PostgreSQL.
    Returns True when a row was removed.
    """
    if engine.dialect.name == "postgresql":
        return False
    with engine.begin() as conn:
        if not conn.dialect.has_table(conn, lock_table.name):
            return False
        result = conn.execute(delete(lock_table).where(lock_table.c.id == LOCK_ROW_ID))
    removed = result.rowcount > 0
    if removed:
        logger.warning("migration_lock_forced_release")
    return removed
