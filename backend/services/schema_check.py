"""
Schema Check Service - Validates database schema matches SQLAlchemy models

Compares the live database (as built by the SQL migrations) against the
ORM models, so a model column added without a migration, or a migration
without a model change, is caught before it fails a request.

Usage:
    from services.schema_check import run_schema_check
    report = run_schema_check(engine)
    if not report['is_valid']:
        for issue in report['missing_columns']:
            print(f"  Missing: {issue['table']}.{issue['column']}")

    # CLI
    python backend/cli.py migrate check-models
"""

from typing import Any, Dict, Optional

from sqlalchemy import MetaData, inspect
from sqlalchemy.engine import Engine

from models.base import Base


def expected_schema(metadata: Optional[MetaData] = None) -> Dict[str, Dict[str, list]]:
    """Expected columns per table, split by nullability, from model metadata."""
    metadata = metadata or Base.metadata
    schema = {}
    for table in metadata.sorted_tables:
        schema[table.name] = {
            'required': [c.name for c in table.columns if not c.nullable],
            'optional': [c.name for c in table.columns if c.nullable],
        }
    return schema


def run_schema_check(engine: Engine, metadata: Optional[MetaData] = None) -> Dict[str, Any]:
    """
    Run schema check comparing database to expected model schema.

    Returns:
        Dict with:
            - is_valid: bool - True if no table or model column is missing
            - missing_tables: List of tables that don't exist
            - missing_columns: List of {table, column} for model columns the table lacks
            - extra_columns: List of {table, column} for columns in DB but not in model
            - summary: Human-readable summary string
    """
    missing_tables = []
    missing_columns = []
    extra_columns = []

    inspector = inspect(engine)
    db_tables = set(inspector.get_table_names())

    for table_name, schema in expected_schema(metadata).items():
        if table_name not in db_tables:
            missing_tables.append(table_name)
            continue

        db_columns = {c['name'] for c in inspector.get_columns(table_name)}
        expected_all = set(schema['required']) | set(schema['optional'])

        # Nullable or not, a mapped column the table lacks fails every query
        # that loads the entity
        for col in schema['required'] + schema['optional']:
            if col not in db_columns:
                missing_columns.append({'table': table_name, 'column': col})

        for col in sorted(db_columns - expected_all):
            extra_columns.append({'table': table_name, 'column': col})

    is_valid = not missing_tables and not missing_columns

    summary_parts = []
    if missing_tables:
        summary_parts.append(f"Missing tables: {', '.join(missing_tables)}")
    if missing_columns:
        cols = [f"{c['table']}.{c['column']}" for c in missing_columns]
        summary_parts.append(f"Missing columns: {', '.join(cols)}")
    if extra_columns:
        summary_parts.append(f"{len(extra_columns)} columns not mapped by any model")

    return {
        'is_valid': is_valid,
        'missing_tables': missing_tables,
        'missing_columns': missing_columns,
        'extra_columns': extra_columns,
        'summary': '; '.join(summary_parts) if summary_parts else 'Schema OK',
    }
