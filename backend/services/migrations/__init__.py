"""
Schema migration package.

Provides the on-disk migration loader, the schema version ledger, the
global migration lock and the MigrationEngine (run / apply / revert / show).
"""

from .migration import Migration, load_migrations, sql_migration, split_statements, create_migration_files
from .ledger import MigrationState
from .engine import MigrationEngine, MigrationStatus, RunOutcome, RunResult, StatusEntry

__all__ = [
    'Migration',
    'load_migrations',
    'sql_migration',
    'split_statements',
    'create_migration_files',
    'MigrationState',
    'MigrationEngine',
    'MigrationStatus',
    'RunOutcome',
    'RunResult',
    'StatusEntry',
]
