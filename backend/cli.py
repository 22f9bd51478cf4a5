#!/usr/bin/env python3
"""
CLI for contract bindings and schema migrations

Commands:
    contract generate   - Regenerate bindings from the contract (wholesale)
    contract check      - Fail if committed bindings differ from a fresh render
    contract diff       - Compare two contract versions, flag breaking changes
    contract show       - List operations and schemas

    migrate run         - Apply all pending migrations, in order
    migrate apply KEY   - Apply exactly one migration (must be the next pending)
    migrate revert      - Revert the most recently applied migration
    migrate show        - Identifier + state for every known migration
    migrate force       - Operator override of one ledger row
    migrate unlock      - Drop a lock row left by a dead runner
    migrate new NAME    - Scaffold an up/down pair
    migrate check-models - Compare ORM models against the live tables

Exit codes (migrate run / apply / revert):
    0  applied (or reverted) N migrations
    1  failed at a migration (message names it)
    3  nothing to do
    4  ledger is dirty; operator must `force`
    5  order violation; nothing was touched

Usage:
    python backend/cli.py contract generate
    DATABASE_URL=sqlite:///dev.db python backend/cli.py migrate run
"""

import json
import sys

import click


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOTHING_TO_DO = 3
EXIT_DIRTY = 4
EXIT_ORDER = 5


def _migration_engine(ctx):
    """Build a MigrationEngine for the configured database (job engine, no pooling)."""
    from config import get_migrations_database_url
    from db.engine import build_engine
    from services.migrations import MigrationEngine, load_migrations

    obj = ctx.obj
    url = obj.get("database_url") or get_migrations_database_url()
    engine = build_engine(url, kind="job")
    return MigrationEngine(engine, load_migrations(obj["migrations_dir"]), lock_timeout=obj["lock_timeout"])


def _finish(result):
    from services.migrations import RunOutcome

    color = {
        RunOutcome.APPLIED: "green",
        RunOutcome.REVERTED: "green",
        RunOutcome.NOTHING_TO_DO: "white",
        RunOutcome.FAILED: "red",
    }[result.outcome]
    click.secho(result.describe(), fg=color, err=result.outcome is RunOutcome.FAILED)

    if result.outcome is RunOutcome.NOTHING_TO_DO:
        sys.exit(EXIT_NOTHING_TO_DO)
    if result.outcome is RunOutcome.FAILED:
        sys.exit(EXIT_DIRTY if result.dirty else EXIT_FAILED)
    sys.exit(EXIT_OK)


def _guarded(fn, *args):
    """Run an engine operation, mapping refusals to their exit codes."""
    from errors import MigrationFailure, MigrationOrderError

    try:
        return fn(*args)
    except MigrationOrderError as e:
        click.secho(f"Refused: {e.message}", fg="red", err=True)
        sys.exit(EXIT_ORDER)
    except MigrationFailure as e:
        click.secho(f"Error: {e.message}", fg="red", err=True)
        sys.exit(EXIT_DIRTY if e.dirty else EXIT_FAILED)


@click.group()
@click.version_option(version="1.2.0", prog_name="lockstep")
def cli():
    """Lockstep CLI - keep contract, bindings and schema in step."""
    pass


# =============================================================================
# CONTRACT
# =============================================================================

@cli.group()
@click.option("--contract", "contract_path", envvar="CONTRACT_PATH", default=None,
              help="Contract file or fragment directory")
@click.option("--bindings", "bindings_path", envvar="BINDINGS_PATH", default=None,
              help="Generated bindings module path")
@click.pass_context
def contract(ctx, contract_path, bindings_path):
    """Contract and binding commands."""
    from config import Config

    ctx.obj = {
        "contract_path": contract_path or Config.CONTRACT_PATH,
        "bindings_path": bindings_path or Config.BINDINGS_PATH,
    }


def _load(path):
    from api.contracts import load_contract
    from errors import ContractError

    try:
        return load_contract(path)
    except ContractError as e:
        click.secho(f"ContractError: {e.message}", fg="red", err=True)
        if e.details:
            click.echo(json.dumps(e.details, indent=2, default=str), err=True)
        sys.exit(EXIT_FAILED)


@contract.command("generate")
@click.pass_context
def contract_generate(ctx):
    """Regenerate bindings from the contract, replacing the file wholesale."""
    from api.contracts import write_bindings
    from errors import ContractError

    loaded = _load(ctx.obj["contract_path"])
    try:
        result = write_bindings(loaded, ctx.obj["bindings_path"])
    except ContractError as e:
        click.secho(f"ContractError: {e.message}", fg="red", err=True)
        sys.exit(EXIT_FAILED)

    state = "updated" if result.changed else "unchanged"
    click.secho(
        f"Bindings {state}: {result.path} (contract {loaded.version}, digest {result.digest[:12]})",
        fg="green" if result.changed else "white",
    )


@contract.command("check")
@click.pass_context
def contract_check(ctx):
    """Exit 1 if the bindings file is not exactly what `generate` would write."""
    from api.contracts import check_bindings

    loaded = _load(ctx.obj["contract_path"])
    if not check_bindings(loaded, ctx.obj["bindings_path"]):
        click.secho(
            f"Bindings at {ctx.obj['bindings_path']} are stale or missing. "
            "Run: python backend/cli.py contract generate",
            fg="red", err=True,
        )
        sys.exit(EXIT_FAILED)
    click.secho(f"Bindings up to date (contract {loaded.version})", fg="green")


@contract.command("diff")
@click.argument("old_path", type=click.Path(exists=True))
@click.argument("new_path", type=click.Path(exists=True), required=False)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--fail-on-breaking", is_flag=True, help="Exit 1 when breaking changes are found")
@click.pass_context
def contract_diff(ctx, old_path, new_path, output_json, fail_on_breaking):
    """
    Compare OLD_PATH against NEW_PATH (default: the current contract).
    """
    from api.contracts import diff_contracts
    from api.contracts.diff import format_diff

    diff = diff_contracts(_load(old_path), _load(new_path or ctx.obj["contract_path"]))

    if output_json:
        click.echo(json.dumps(diff.to_dict(), indent=2))
    else:
        click.echo(format_diff(diff))

    if fail_on_breaking and diff.is_breaking:
        sys.exit(EXIT_FAILED)


@contract.command("show")
@click.pass_context
def contract_show(ctx):
    """List operations and schemas of the current contract."""
    loaded = _load(ctx.obj["contract_path"])
    click.secho(f"{loaded.title} {loaded.version} (digest {loaded.digest[:12]})", bold=True)
    click.echo()
    for op in sorted(loaded.operations.values(), key=lambda o: (o.path, o.method)):
        auth = "auth" if op.requires_auth else "public"
        body = op.request_schema or "-"
        response = f"[{op.response_schema}]" if op.response_is_list else (op.response_schema or "-")
        click.echo(f"  {op.method:<6} {op.path:<28} {op.operation_id:<14} {auth:<6} {body} -> {op.success_status} {response}")
    click.echo()
    click.echo(f"  Schemas: {', '.join(sorted(loaded.schemas))}")


# =============================================================================
# MIGRATE
# =============================================================================

@cli.group()
@click.option("--database-url", envvar="DATABASE_URL_MIGRATIONS", default=None,
              help="Database URL (default: DATABASE_URL_MIGRATIONS, then DATABASE_URL)")
@click.option("--migrations-dir", envvar="MIGRATIONS_DIR", default=None, help="Migration files directory")
@click.option("--lock-timeout", type=float, default=30.0, show_default=True,
              help="Seconds to wait for the migration lock")
@click.pass_context
def migrate(ctx, database_url, migrations_dir, lock_timeout):
    """Schema migration commands."""
    from config import Config

    ctx.obj = {
        "database_url": database_url,
        "migrations_dir": migrations_dir or Config.MIGRATIONS_DIR,
        "lock_timeout": lock_timeout,
    }


@migrate.command("run")
@click.pass_context
def migrate_run(ctx):
    """Apply all pending migrations in ascending order; stop at the first failure."""
    engine = _guarded(_migration_engine, ctx)
    _finish(_guarded(engine.run))


@migrate.command("apply")
@click.argument("key")
@click.pass_context
def migrate_apply(ctx, key):
    """Apply exactly migration KEY (must be the earliest pending)."""
    engine = _guarded(_migration_engine, ctx)
    _finish(_guarded(engine.apply, key))


@migrate.command("revert")
@click.option("--key", default=None, help="Refuse unless KEY is the latest applied migration")
@click.pass_context
def migrate_revert(ctx, key):
    """Revert the most recently applied migration."""
    engine = _guarded(_migration_engine, ctx)
    _finish(_guarded(engine.revert, key))


@migrate.command("show")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def migrate_show(ctx, output_json):
    """Show identifier and state for every known migration (read-only)."""
    engine = _guarded(_migration_engine, ctx)
    status = engine.show()

    if output_json:
        click.echo(json.dumps(status.to_dict(), indent=2))
        return

    colors = {"applied": "green", "pending": "yellow", "applying": "red", "reverting": "red"}
    for entry in status.entries:
        drift = "  (checksum changed since applied)" if entry.checksum_mismatch else ""
        click.echo(
            click.style(f"  {entry.state.value:<10}", fg=colors[entry.state.value])
            + f" {entry.key}  {entry.name}{drift}"
        )
    for key in status.unknown:
        click.secho(f"  {'unknown':<10} {key}  (in ledger, no migration file)", fg="red")
    click.echo()
    click.echo(f"Pending: {len(status.pending)}  Dirty: {len(status.dirty)}  Current: {status.is_current}")


@migrate.command("force")
@click.argument("key")
@click.argument("state", type=click.Choice(["applied", "pending"]))
@click.pass_context
def migrate_force(ctx, key, state):
    """
    Set ledger row KEY to STATE without running any SQL.

    Use only after verifying storage by hand (e.g. a failed non-transactional
    migration).
    """
    from services.migrations import MigrationState

    engine = _guarded(_migration_engine, ctx)
    _guarded(engine.force, key, MigrationState(state))
    click.secho(f"Ledger: {key} -> {state}", fg="yellow")


@migrate.command("unlock")
@click.pass_context
def migrate_unlock(ctx):
    """Release a migration lock row left behind by a crashed runner."""
    engine = _guarded(_migration_engine, ctx)
    if engine.unlock():
        click.secho("Migration lock released", fg="yellow")
    else:
        click.echo("No lock row held")


@migrate.command("new")
@click.argument("name")
@click.pass_context
def migrate_new(ctx, name):
    """Scaffold NAME as <timestamp>_NAME.up.sql / .down.sql."""
    from services.migrations import create_migration_files

    up, down = _guarded(create_migration_files, ctx.obj["migrations_dir"], name)
    click.echo(f"Created {up}")
    click.echo(f"Created {down}")


@migrate.command("check-models")
@click.pass_context
def migrate_check_models(ctx):
    """Compare ORM models against the live database tables."""
    from services.schema_check import run_schema_check

    engine = _guarded(_migration_engine, ctx)
    report = run_schema_check(engine.engine)
    click.secho(report['summary'], fg="green" if report['is_valid'] else "red")
    if not report['is_valid']:
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    cli()
