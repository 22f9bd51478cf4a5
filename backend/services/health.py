"""
Health and Readiness Check Service

Provides fast, fail-safe health checks:
- check_database_ready(): DB readiness with a bounded statement timeout
- health_report(): readiness plus schema ledger status, for GET /api/health

Nothing here raises: an unreachable database is reported, not thrown.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.engine import Engine

from services.migrations import MigrationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    database: bool
    schema_current: bool
    pending_migrations: int

    @property
    def ok(self) -> bool:
        return self.database and self.schema_current


def check_database_ready(engine: Engine, timeout_ms: int = 500) -> bool:
    """
    Check if database is ready to accept queries.

    Uses an engine-level connection (never the request session), so a
    failing probe cannot poison request state.
    """
    try:
        with engine.begin() as conn:
            if engine.dialect.name == "postgresql":
                # SET LOCAL applies within this transaction only
                conn.execute(text(f"SET LOCAL statement_timeout = '{int(timeout_ms)}ms'"))
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("db_readiness_failed err=%s", str(e)[:200])
        return False


def health_report(migrations: MigrationEngine, timeout_ms: int = 500) -> HealthReport:
    if not check_database_ready(migrations.engine, timeout_ms):
        return HealthReport(database=False, schema_current=False, pending_migrations=len(migrations.migrations))

    try:
        status = migrations.show()
    except Exception as e:
        logger.warning("ledger_read_failed err=%s", str(e)[:200])
        return HealthReport(database=True, schema_current=False, pending_migrations=len(migrations.migrations))

    return HealthReport(
        database=True,
        schema_current=status.is_current,
        pending_migrations=len(status.pending),
    )
