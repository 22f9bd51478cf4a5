"""
Flask Application Factory

Startup order (each step fails fast):
1. Load the contract and the generated bindings (stale bindings refuse to load)
2. Build the web engine (one pooled connection, warmup with retry)
3. Check the schema ledger is current and models match the live tables
4. Register routes and verify every contract operation has exactly one

Nothing is created at import time: tests and the CLI build their own apps
with config overrides.
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask
from flask_cors import CORS

from config import Config, get_database_url


logger = logging.getLogger('app')


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    root.setLevel(level.upper())


def _check_schema(migrations) -> None:
    """
    HARD FAIL: don't serve against a schema the code was not written for.
    """
    from services.schema_check import run_schema_check

    status = migrations.show()
    if not status.is_current:
        raise RuntimeError(
            f"Schema ledger is not current: pending={status.pending} dirty={status.dirty} "
            f"unknown={status.unknown}. Run migrations before starting the app: "
            "python backend/cli.py migrate run"
        )

    report = run_schema_check(migrations.engine)
    if not report['is_valid']:
        raise RuntimeError(f"Schema drift: {report['summary']}. Models and migrations disagree.")
    logger.info("schema_check_passed migrations=%d", len(status.entries))


def create_app(overrides: Optional[Dict[str, Any]] = None) -> Flask:
    from api.contracts import ContractStore, load_bindings
    from api.contracts.coverage import check_route_coverage
    from api.extension import LockstepState, init_state
    from api.middleware import (
        setup_error_handlers,
        setup_request_id_middleware,
        setup_request_logging_middleware,
    )
    from db.engine import build_engine
    from db.session import make_session_factory, release_request_session
    from routes import BLUEPRINTS
    from services.migrations import MigrationEngine, load_migrations
    from utils.jwt_verifier import build_verifier

    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    _configure_logging(app.config['LOG_LEVEL'])

    CORS(app,
         resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}},
         methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
         expose_headers=["X-Request-ID", "X-API-Contract-Version"],
         supports_credentials=False)

    # === API CONTRACT MIDDLEWARE ===
    setup_request_id_middleware(app)
    setup_request_logging_middleware(app)
    setup_error_handlers(app)

    contracts = ContractStore.load(app.config['CONTRACT_PATH'])
    bindings = load_bindings(app.config['BINDINGS_PATH'], contracts.contract)

    database_url = app.config.get('DATABASE_URL') or get_database_url()
    engine = build_engine(
        database_url,
        kind="web",
        pool_timeout=app.config['DB_POOL_TIMEOUT_SECONDS'],
        connect_timeout=app.config['DB_CONNECT_TIMEOUT_SECONDS'],
        statement_timeout_ms=app.config['DB_STATEMENT_TIMEOUT_MS'],
        warmup=app.config.get('DB_WARMUP', True),
    )
    migrations = MigrationEngine(engine, load_migrations(app.config['MIGRATIONS_DIR']))

    if app.config['REQUIRE_CURRENT_SCHEMA']:
        _check_schema(migrations)
    else:
        logger.warning("schema_check_disabled REQUIRE_CURRENT_SCHEMA=false")

    init_state(app, LockstepState(
        contracts=contracts,
        bindings=bindings,
        engine=engine,
        session_factory=make_session_factory(engine),
        verifier=app.config.get('TOKEN_VERIFIER') or build_verifier(app.config),
        migrations=migrations,
        roles_claim=app.config['JWT_ROLES_CLAIM'],
        cdn_base_url=app.config['CDN_BASE_URL'],
    ))

    app.teardown_request(release_request_session)

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix='/api')

    check_route_coverage(app, contracts.contract)

    logger.info(
        "app_ready contract=%s operations=%d migrations=%d",
        contracts.version, len(contracts.list_operations()), len(migrations.migrations),
    )
    return app


def run_app():
    """Main entry point for local development - starts server with Flask's dev server."""
    app = create_app()
    app.run(debug=app.config['DEBUG'], host="0.0.0.0", port=5000)


if __name__ == "__main__":
    run_app()
