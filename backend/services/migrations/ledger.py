"""
Schema Version Ledger - which migrations are applied, persisted in storage.

One row per migration that is not Pending:
    applied    - the apply step committed
    applying   - an apply step started and has not finished
    reverting  - a revert step started and has not finished

A missing row means Pending. applying/reverting rows are written (and
committed) before a step runs; a crash in between therefore leaves a
deterministic, visible marker instead of a silent half-applied change.

Only MigrationEngine writes here.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection

from .migration import Migration


LEDGER_TABLE = "_schema_ledger"
LOCK_TABLE = "_schema_ledger_lock"

ledger_metadata = MetaData()

ledger_table = Table(
    LEDGER_TABLE,
    ledger_metadata,
    Column("key", String(14), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("state", String(16), nullable=False),
    Column("checksum", String(64), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

lock_table = Table(
    LOCK_TABLE,
    ledger_metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("holder", String(128), nullable=False),
    Column("acquired_at", DateTime(timezone=True), nullable=False),
)


class MigrationState(str, enum.Enum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    REVERTING = "reverting"

    @property
    def is_dirty(self) -> bool:
        return self in (MigrationState.APPLYING, MigrationState.REVERTING)


@dataclass(frozen=True)
class LedgerRow:
    key: str
    name: str
    state: MigrationState
    checksum: str
    updated_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_ledger(conn: Connection) -> None:
    ledger_metadata.create_all(conn, checkfirst=True)


def ledger_exists(conn: Connection) -> bool:
    return conn.dialect.has_table(conn, LEDGER_TABLE)


def read_ledger(conn: Connection) -> Dict[str, LedgerRow]:
    """All ledger rows by key. An absent ledger table reads as empty."""
    if not ledger_exists(conn):
        return {}
    rows = conn.execute(select(ledger_table).order_by(ledger_table.c.key)).mappings()
    return {
        row["key"]: LedgerRow(
            key=row["key"],
            name=row["name"],
            state=MigrationState(row["state"]),
            checksum=row["checksum"],
            updated_at=row["updated_at"],
        )
        for row in rows
    }


def mark(conn: Connection, migration: Migration, state: MigrationState) -> None:
    """Upsert the row for `migration` (PENDING deletes it)."""
    if state is MigrationState.PENDING:
        clear(conn, migration.key)
        return

    values = {
        "name": migration.name,
        "state": state.value,
        "checksum": migration.checksum,
        "updated_at": _now(),
    }
    result = conn.execute(update(ledger_table).where(ledger_table.c.key == migration.key).values(**values))
    if result.rowcount == 0:
        conn.execute(insert(ledger_table).values(key=migration.key, **values))


def clear(conn: Connection, key: str) -> None:
    conn.execute(delete(ledger_table).where(ledger_table.c.key == key))
