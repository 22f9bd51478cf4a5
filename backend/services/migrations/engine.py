"""
Schema Migration Engine.

Per migration state machine: Pending -> Applied (apply) and
Applied -> Pending (revert). The ledger's applied set is always a contiguous
prefix of the ordered migration list: a move that would break that is
refused with MigrationOrderError before anything is written.

Each step:
1. commits an applying/reverting marker to the ledger
2. runs the step; for transactional migrations the step and the final
   ledger write share one transaction
3. on failure of a transactional step, the marker is restored (nothing was
   mutated); on failure of a non-transactional step the marker stays and
   the ledger is dirty until an operator runs `force`

`run` stops at the first failure; earlier steps stay committed. There is no
automatic retry and no compensating rollback.

Every mutating operation runs under MigrationLock.
"""

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy.engine import Connection, Engine

from errors import MigrationFailure, MigrationOrderError

from . import ledger
from .ledger import LedgerRow, MigrationState
from .lock import MigrationLock, force_unlock
from .migration import Migration


logger = logging.getLogger('migrations')


class RunOutcome(str, enum.Enum):
    NOTHING_TO_DO = "nothing_to_do"
    APPLIED = "applied"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass
class RunResult:
    outcome: RunOutcome
    keys: List[str] = field(default_factory=list)
    failed_key: Optional[str] = None
    error: Optional[str] = None
    dirty: bool = False

    @property
    def count(self) -> int:
        return len(self.keys)

    @property
    def ok(self) -> bool:
        return self.outcome is not RunOutcome.FAILED

    def describe(self) -> str:
        if self.outcome is RunOutcome.NOTHING_TO_DO:
            return "Nothing to do"
        if self.outcome is RunOutcome.APPLIED:
            return f"Applied {self.count} migration(s): {', '.join(self.keys)}"
        if self.outcome is RunOutcome.REVERTED:
            return f"Reverted {', '.join(self.keys)}"
        done = f" after {self.count} successful step(s)" if self.keys else ""
        state = " (ledger is dirty, resolve manually then `force`)" if self.dirty else ""
        return f"Failed at migration {self.failed_key}{done}: {self.error}{state}"


@dataclass(frozen=True)
class StatusEntry:
    key: str
    name: str
    state: MigrationState
    checksum_mismatch: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "state": self.state.value,
            "checksumMismatch": self.checksum_mismatch,
        }


@dataclass(frozen=True)
class MigrationStatus:
    entries: List[StatusEntry]
    unknown: List[str] = field(default_factory=list)

    @property
    def states(self) -> List[MigrationState]:
        return [e.state for e in self.entries]

    @property
    def pending(self) -> List[str]:
        return [e.key for e in self.entries if e.state is MigrationState.PENDING]

    @property
    def dirty(self) -> List[str]:
        return [e.key for e in self.entries if e.state.is_dirty]

    @property
    def is_current(self) -> bool:
        return not self.pending and not self.dirty and not self.unknown

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migrations": [e.to_dict() for e in self.entries],
            "pending": len(self.pending),
            "dirty": self.dirty,
            "unknown": self.unknown,
            "current": self.is_current,
        }


class MigrationEngine:
    """
    Applies and reverts an ordered set of migrations against one database.

    Args:
        engine: SQLAlchemy engine (a "job" engine from db.engine)
        migrations: Known migrations; sorted here, keys must be unique
        lock_timeout: Seconds to wait for the global migration lock
    """

    def __init__(self, engine: Engine, migrations: Sequence[Migration], lock_timeout: float = 30.0):
        ordered = sorted(migrations, key=lambda m: m.key)
        keys = [m.key for m in ordered]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise MigrationFailure(f"Duplicate migration keys: {', '.join(duplicates)}")

        self.engine = engine
        self.migrations: List[Migration] = ordered
        self._by_key = {m.key: m for m in ordered}
        self.lock = MigrationLock(engine, timeout=lock_timeout)

    # ------------------------------------------------------------------
    # Read-only
    # ------------------------------------------------------------------

    def show(self) -> MigrationStatus:
        with self.engine.connect() as conn:
            rows = ledger.read_ledger(conn)
        return self._status(rows)

    def pending(self) -> List[Migration]:
        status = self.show()
        return [self._by_key[k] for k in status.pending]

    def is_current(self) -> bool:
        return self.show().is_current

    def _status(self, rows: Dict[str, LedgerRow]) -> MigrationStatus:
        entries = []
        for m in self.migrations:
            row = rows.get(m.key)
            if row is None:
                entries.append(StatusEntry(m.key, m.name, MigrationState.PENDING))
                continue
            mismatch = row.checksum != m.checksum
            if mismatch:
                logger.warning("migration_checksum_mismatch key=%s name=%s", m.key, m.name)
            entries.append(StatusEntry(m.key, m.name, row.state, checksum_mismatch=mismatch))
        unknown = sorted(k for k in rows if k not in self._by_key)
        return MigrationStatus(entries=entries, unknown=unknown)

    # ------------------------------------------------------------------
    # Mutating
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        """Apply every pending migration in ascending order."""
        with self._locked() as status:
            todo = [self._by_key[k] for k in status.pending]
            if not todo:
                logger.info("migrate_run nothing_to_do applied=%d", len(self.migrations))
                return RunResult(RunOutcome.NOTHING_TO_DO)

            logger.info("migrate_run pending=%d", len(todo))
            done: List[str] = []
            for migration in todo:
                try:
                    self._apply_step(migration)
                except MigrationFailure as e:
                    return RunResult(
                        RunOutcome.FAILED, keys=done, failed_key=e.key, error=e.message, dirty=e.dirty
                    )
                done.append(migration.key)
            return RunResult(RunOutcome.APPLIED, keys=done)

    def apply(self, key: str) -> RunResult:
        """
        Apply exactly one migration.

        Raises:
            MigrationOrderError: If `key` is unknown, already applied, or not
                the earliest pending migration (storage is not touched)
        """
        with self._locked() as status:
            if key not in self._by_key:
                raise MigrationOrderError(f"Unknown migration {key}", key=key)
            if key not in status.pending:
                raise MigrationOrderError(f"Migration {key} is already applied", key=key)
            first = status.pending[0]
            if key != first:
                raise MigrationOrderError(
                    f"Cannot apply {key} while {first} is pending (migrations apply in order)", key=key
                )
            try:
                self._apply_step(self._by_key[key])
            except MigrationFailure as e:
                return RunResult(RunOutcome.FAILED, failed_key=key, error=e.message, dirty=e.dirty)
            return RunResult(RunOutcome.APPLIED, keys=[key])

    def revert(self, key: Optional[str] = None) -> RunResult:
        """
        Revert the single most recently applied migration.

        Raises:
            MigrationOrderError: If `key` is given and is not the latest
                applied migration (storage is not touched)
        """
        with self._locked() as status:
            applied = [e.key for e in status.entries if e.state is MigrationState.APPLIED]
            if not applied:
                if key is not None:
                    raise MigrationOrderError(f"Migration {key} is not applied", key=key)
                logger.info("migrate_revert nothing_to_do")
                return RunResult(RunOutcome.NOTHING_TO_DO)

            latest = applied[-1]
            if key is not None and key != latest:
                raise MigrationOrderError(
                    f"Cannot revert {key} while {latest} is applied (only the latest can be reverted)",
                    key=key,
                )
            try:
                self._revert_step(self._by_key[latest])
            except MigrationFailure as e:
                return RunResult(RunOutcome.FAILED, failed_key=latest, error=e.message, dirty=e.dirty)
            return RunResult(RunOutcome.REVERTED, keys=[latest])

    def force(self, key: str, state: MigrationState) -> None:
        """
        Operator override: set the ledger row for `key` without running SQL.

        Used after resolving a dirty migration by hand. PENDING removes the
        row (also accepted for ledger rows with no migration file).
        """
        if key not in self._by_key and not (state is MigrationState.PENDING):
            raise MigrationOrderError(f"Unknown migration {key}", key=key)
        if state.is_dirty:
            raise MigrationOrderError(f"Cannot force {key} into in-progress state '{state.value}'", key=key)

        with self.lock.hold():
            with self.engine.begin() as conn:
                ledger.ensure_ledger(conn)
                if key in self._by_key:
                    ledger.mark(conn, self._by_key[key], state)
                else:
                    ledger.clear(conn, key)
        logger.warning("migration_forced key=%s state=%s", key, state.value)

    def unlock(self) -> bool:
        return force_unlock(self.engine)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[MigrationStatus]:
        """Hold the global lock, then verify the ledger may move at all."""
        with self.lock.hold():
            with self.engine.begin() as conn:
                ledger.ensure_ledger(conn)
                rows = ledger.read_ledger(conn)
            status = self._status(rows)
            self._check_movable(status)
            yield status

    def _check_movable(self, status: MigrationStatus) -> None:
        if status.dirty:
            key = status.dirty[0]
            raise MigrationFailure(
                f"Migration {key} is in progress or was interrupted; "
                f"verify storage by hand, then `force {key} applied|pending`",
                key=key,
                dirty=True,
            )
        if status.unknown:
            raise MigrationOrderError(
                f"Ledger records migrations with no definition: {', '.join(status.unknown)}",
                key=status.unknown[0],
            )

        seen_pending = None
        for entry in status.entries:
            if entry.state is MigrationState.PENDING:
                seen_pending = seen_pending or entry.key
            elif seen_pending is not None:
                raise MigrationOrderError(
                    f"Ledger is not a contiguous prefix: {entry.key} is applied "
                    f"while earlier {seen_pending} is pending",
                    key=entry.key,
                )

    def _apply_step(self, migration: Migration) -> None:
        self._step(migration, forward=True)

    def _revert_step(self, migration: Migration) -> None:
        self._step(migration, forward=False)

    def _step(self, migration: Migration, forward: bool) -> None:
        verb = "apply" if forward else "revert"
        marker = MigrationState.APPLYING if forward else MigrationState.REVERTING
        before = MigrationState.PENDING if forward else MigrationState.APPLIED
        after = MigrationState.APPLIED if forward else MigrationState.PENDING
        action = migration.apply if forward else migration.revert
        mode = "TRANSACTION" if migration.transactional else "AUTOCOMMIT"

        logger.info("migration_%s_start key=%s name=%s mode=%s", verb, migration.key, migration.name, mode)

        with self.engine.begin() as conn:
            ledger.mark(conn, migration, marker)

        try:
            if migration.transactional:
                with self.engine.begin() as conn:
                    action(conn)
                    ledger.mark(conn, migration, after)
            else:
                with self._autocommit_connection() as conn:
                    action(conn)
                with self.engine.begin() as conn:
                    ledger.mark(conn, migration, after)
        except Exception as e:
            logger.error(
                "migration_%s_failed key=%s name=%s mode=%s err=%s",
                verb, migration.key, migration.name, mode, str(e)[:300]
            )
            if not migration.transactional:
                raise MigrationFailure(
                    f"{migration.label}: {e}", key=migration.key, dirty=True
                ) from e
            self._restore_marker(migration, before, e)
            raise MigrationFailure(f"{migration.label}: {e}", key=migration.key) from e

        logger.info("migration_%s_ok key=%s name=%s", verb, migration.key, migration.name)

    def _restore_marker(self, migration: Migration, before: MigrationState, cause: Exception) -> None:
        # The step's transaction rolled back; only the marker needs undoing
        try:
            with self.engine.begin() as conn:
                ledger.mark(conn, migration, before)
        except Exception as e:
            logger.error("migration_marker_restore_failed key=%s err=%s", migration.key, str(e)[:200])
            raise MigrationFailure(
                f"{migration.label}: {cause} (ledger marker could not be restored: {e})",
                key=migration.key,
                dirty=True,
            ) from e

    @contextmanager
    def _autocommit_connection(self) -> Iterator[Connection]:
        conn = self.engine.connect()
        try:
            if self.engine.dialect.name == "postgresql":
                conn = conn.execution_options(isolation_level="AUTOCOMMIT")
            yield conn
            conn.commit()
        finally:
            conn.close()
