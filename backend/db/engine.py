"""
Canonical database engine factory.

This is the SINGLE SOURCE OF TRUTH for engine creation. There is no module
level engine: create_app() and the CLI each build one and pass it down
explicitly.

Usage:
    from db.engine import build_engine

    # Web process: at most one live connection per worker
    engine = build_engine(url, kind="web")

    # CLI / one-shot job: no pooling, clean connect/close per operation
    engine = build_engine(url, kind="job")

Why pool_size=1 for web?
    - Workers may be short-lived and numerous
    - Each execution unit holds at most one live connection at a time
    - pool_timeout bounds the wait when the connection is checked out

Warmup with retry:
    - Handles cold starts of managed PostgreSQL / poolers
    - Exponential backoff (0.75s, 1.5s, 3s, 6s)
    - Fails fast after 4 attempts with clear error

SQLite:
    pysqlite's implicit transaction handling skips DDL; the engine is
    switched to explicit BEGIN so migrations stay transactional.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import NullPool, StaticPool

log = logging.getLogger(__name__)

ENGINE_KINDS = ("job", "web")


def is_sqlite(engine_or_url) -> bool:
    url = engine_or_url.url if isinstance(engine_or_url, Engine) else make_url(str(engine_or_url))
    return url.get_backend_name() == "sqlite"


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def _enable_sqlite_transactional_ddl(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        # Disable pysqlite's own BEGIN handling
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _warmup(engine: Engine, attempts: int = 4, base_sleep: float = 0.75) -> None:
    """
    Warm up database connection with exponential backoff retry.

    Args:
        engine: SQLAlchemy engine to warm up
        attempts: Number of retry attempts (default 4)
        base_sleep: Base sleep time in seconds (doubles each attempt)

    Raises:
        OperationalError: If all attempts fail
    """
    last_error: Optional[Exception] = None

    for i in range(attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("db_warmup_success attempt=%d", i + 1)
            return
        except OperationalError as e:
            last_error = e
            sleep_s = base_sleep * (2 ** i)
            log.warning(
                "db_warmup_retry attempt=%d/%d sleep_s=%.2f err=%s",
                i + 1, attempts, sleep_s, str(e)[:100]
            )
            if i < attempts - 1:
                time.sleep(sleep_s)

    log.error("db_warmup_failed after %d attempts", attempts)
    raise last_error  # type: ignore[misc]


def _postgres_connect_args(connect_timeout: int, statement_timeout_ms: int) -> Dict[str, Any]:
    return {
        "connect_timeout": connect_timeout,
        "options": f"-c statement_timeout={statement_timeout_ms}",
    }


def build_engine(
    database_url: str,
    kind: str = "job",
    pool_timeout: float = 10.0,
    connect_timeout: int = 10,
    statement_timeout_ms: int = 30000,
    warmup: bool = True,
) -> Engine:
    """
    Build a database engine configured for the specified use case.

    Args:
        database_url: SQLAlchemy URL (see config.get_database_url)
        kind: Engine type
            - "job": CLI / one-shot scripts. NullPool.
            - "web": request-serving process. One pooled connection,
                     bounded checkout wait, pre-ping.
        pool_timeout: Seconds to wait for the pooled connection (web)
        connect_timeout: Seconds to wait for a new connection (PostgreSQL)
        statement_timeout_ms: Server-side statement timeout (PostgreSQL)
        warmup: Run SELECT 1 with retry before returning

    Raises:
        ValueError: If kind is not "job" or "web"
        OperationalError: If warmup fails after retries
    """
    if kind not in ENGINE_KINDS:
        raise ValueError("kind must be 'job' or 'web'")

    url = make_url(database_url)
    sqlite = url.get_backend_name() == "sqlite"
    opts: Dict[str, Any] = {}

    if sqlite:
        opts["connect_args"] = {"check_same_thread": False, "timeout": connect_timeout}
        if url.database in (None, "", ":memory:"):
            # In-memory databases only exist on their single connection
            opts["poolclass"] = StaticPool
        elif kind == "job":
            opts["poolclass"] = NullPool
        else:
            opts.update(pool_size=1, max_overflow=0, pool_timeout=pool_timeout)
    else:
        opts["connect_args"] = _postgres_connect_args(connect_timeout, statement_timeout_ms)
        opts["pool_pre_ping"] = True
        if kind == "job":
            opts["poolclass"] = NullPool
        else:
            opts.update(pool_size=1, max_overflow=0, pool_timeout=pool_timeout, pool_recycle=300)

    engine = create_engine(url, **opts)
    if sqlite:
        _enable_sqlite_transactional_ddl(engine)

    log.info(
        "db_engine_created kind=%s backend=%s poolclass=%s",
        kind, url.get_backend_name(), type(engine.pool).__name__
    )

    if warmup:
        _warmup(engine)
    return engine
