"""
Migration definitions and the on-disk SQL layout.

A Migration is an immutable (apply, revert) pair identified by a 14-digit
timestamp key (YYYYMMDDHHMMSS). On disk each migration is two files:

    backend/migrations/20250102090000_create_things.up.sql
    backend/migrations/20250102090000_create_things.down.sql

A first line of `-- lockstep:no-transaction` in the up file marks a migration
whose statements cannot run inside a transaction (e.g. CREATE INDEX
CONCURRENTLY). Such a migration can leave storage partially mutated, so a
failure leaves the ledger dirty.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.engine import Connection

from errors import MigrationFailure


logger = logging.getLogger('migrations')

KEY_LENGTH = 14
NO_TRANSACTION_MARKER = "-- lockstep:no-transaction"
FILENAME_RE = re.compile(r"^(?P<key>\d{14})_(?P<name>[a-z0-9_]+)\.(?P<direction>up|down)\.sql$")
NAME_RE = re.compile(r"^[a-z0-9_]+$")

Step = Callable[[Connection], None]


@dataclass(frozen=True)
class Migration:
    key: str
    name: str
    apply: Step = field(compare=False, repr=False)
    revert: Step = field(compare=False, repr=False)
    transactional: bool = True
    checksum: str = ""
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if len(self.key) != KEY_LENGTH or not self.key.isdigit():
            raise MigrationFailure(f"Invalid migration key '{self.key}' (expected {KEY_LENGTH} digits)", key=self.key)
        if not self.checksum:
            digest = hashlib.sha256(f"{self.key}:{self.name}".encode()).hexdigest()
            object.__setattr__(self, "checksum", digest)

    @property
    def label(self) -> str:
        return f"{self.key}_{self.name}"


def split_statements(sql: str) -> List[str]:
    """
    Split a SQL script into individual statements on top-level semicolons.

    Semicolons inside quoted strings, quoted identifiers, comments and
    dollar-quoted bodies do not split. Comment-only fragments are dropped.
    """
    statements: List[str] = []
    buf: List[str] = []
    has_code = False
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            buf.append(sql[i:end])
            i = end
            continue

        if ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(sql[i:end])
            i = end
            continue

        if ch in ("'", '"'):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    # Doubled quote is an escape
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            buf.append(sql[i:j + 1])
            has_code = True
            i = j + 1
            continue

        if ch == "$":
            m = re.match(r"\$[A-Za-z_0-9]*\$", sql[i:])
            if m:
                tag = m.group(0)
                end = sql.find(tag, i + len(tag))
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                has_code = True
                i = end
                continue

        if ch == ";":
            if has_code:
                statements.append("".join(buf).strip())
            buf = []
            has_code = False
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        buf.append(ch)
        i += 1

    if has_code:
        statements.append("".join(buf).strip())
    return statements


def is_transactional(sql: str) -> bool:
    first_line = sql.lstrip().split("\n", 1)[0].strip().lower()
    return first_line != NO_TRANSACTION_MARKER


def _sql_step(statements: List[str], commit_each: bool) -> Step:
    def run(conn: Connection) -> None:
        for statement in statements:
            conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
            if commit_each:
                conn.commit()
    return run


def sql_migration(key: str, name: str, up_sql: str, down_sql: str, source: Optional[str] = None) -> Migration:
    """Build a Migration from the text of its up/down scripts."""
    transactional = is_transactional(up_sql)
    checksum = hashlib.sha256(f"{up_sql}\n--\n{down_sql}".encode()).hexdigest()
    return Migration(
        key=key,
        name=name,
        apply=_sql_step(split_statements(up_sql), commit_each=not transactional),
        revert=_sql_step(split_statements(down_sql), commit_each=not transactional),
        transactional=transactional,
        checksum=checksum,
        source=source,
    )


def load_migrations(directory) -> List[Migration]:
    """
    Load every migration pair under `directory`, sorted by key.

    Raises:
        MigrationFailure: On unrecognised .sql files, a missing half of a
            pair, or two names sharing one key
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise MigrationFailure(f"Migrations directory not found: {directory}")

    pairs: Dict[str, Dict[str, Path]] = {}
    names: Dict[str, str] = {}

    for path in sorted(directory.glob("*.sql")):
        m = FILENAME_RE.match(path.name)
        if not m:
            raise MigrationFailure(
                f"Unrecognised migration file '{path.name}' "
                "(expected <14-digit key>_<name>.up.sql / .down.sql)"
            )
        key, name, direction = m.group("key"), m.group("name"), m.group("direction")
        if names.setdefault(key, name) != name:
            raise MigrationFailure(
                f"Migration key {key} is used by both '{names[key]}' and '{name}'", key=key
            )
        pairs.setdefault(key, {})[direction] = path

    migrations = []
    for key in sorted(pairs):
        files = pairs[key]
        for direction in ("up", "down"):
            if direction not in files:
                raise MigrationFailure(f"Migration {key}_{names[key]} has no {direction}.sql file", key=key)
        migrations.append(sql_migration(
            key,
            names[key],
            files["up"].read_text(encoding="utf-8"),
            files["down"].read_text(encoding="utf-8"),
            source=str(files["up"]),
        ))

    logger.debug("migrations_loaded dir=%s count=%d", directory, len(migrations))
    return migrations


def next_key(existing: List[str], now: Optional[datetime] = None) -> str:
    """Timestamp key for a new migration, strictly greater than every existing key."""
    now = now or datetime.now(timezone.utc)
    key = now.strftime("%Y%m%d%H%M%S")
    latest = max(existing, default=None)
    if latest is not None and key <= latest:
        key = str(int(latest) + 1)
    return key


def create_migration_files(directory, name: str, now: Optional[datetime] = None) -> Tuple[Path, Path]:
    """Scaffold an empty up/down pair for a new migration."""
    if not NAME_RE.match(name):
        raise MigrationFailure(f"Invalid migration name '{name}' (use lowercase letters, digits and _)")

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    existing = [m.group("key") for m in (FILENAME_RE.match(p.name) for p in directory.glob("*.sql")) if m]
    key = next_key(existing, now)

    up = directory / f"{key}_{name}.up.sql"
    down = directory / f"{key}_{name}.down.sql"
    up.write_text(f"-- {key}_{name}: apply\n", encoding="utf-8")
    down.write_text(f"-- {key}_{name}: revert (must undo exactly what the up file does)\n", encoding="utf-8")
    logger.info("migration_created key=%s name=%s", key, name)
    return up, down
