"""
Root pytest configuration for backend tests.

Provides:
- --run-integration flag (tests marked `integration` need a real PostgreSQL)
- Generated bindings for the repo contract (once per session)
- A migrated SQLite database per test
- app / client fixtures and a bearer token factory
"""

import shutil
import sys
import time
from pathlib import Path

# Add backend directory to Python path so imports like
# `from services.migrations import ...` and `from api.contracts import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import jwt
import pytest
import yaml


REPO_ROOT = backend_dir.parent
CONTRACT_DIR = REPO_ROOT / "contract"
MIGRATIONS_DIR = backend_dir / "migrations"

TEST_JWT_SECRET = "test-secret-for-lockstep-0123456789abcdef"
TEST_CDN = "https://cdn.test"


def pytest_addoption(parser):
    """Add custom pytest options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (requires DB/network).",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "integration: tests that require external services (e.g., PostgreSQL)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="integration test (use --run-integration to run)"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# =============================================================================
# CONTRACT + BINDINGS
# =============================================================================

@pytest.fixture(scope="session")
def contract_dir():
    return CONTRACT_DIR


@pytest.fixture(scope="session")
def migrations_dir():
    return MIGRATIONS_DIR


@pytest.fixture(scope="session")
def repo_contract():
    from api.contracts import load_contract
    return load_contract(CONTRACT_DIR)


@pytest.fixture(scope="session")
def bindings_path(tmp_path_factory, repo_contract):
    """Bindings generated from the repo contract into a temp dir."""
    from api.contracts import write_bindings

    path = tmp_path_factory.mktemp("generated") / "bindings.py"
    write_bindings(repo_contract, path)
    return path


@pytest.fixture(scope="session")
def bindings(bindings_path, repo_contract):
    from api.contracts import load_bindings
    return load_bindings(bindings_path, repo_contract)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'lockstep.db'}"


@pytest.fixture
def db_engine(database_url):
    from db.engine import build_engine

    engine = build_engine(database_url, kind="job", warmup=False)
    yield engine
    engine.dispose()


@pytest.fixture
def migrated_db(db_engine):
    """Engine whose database has every repo migration applied."""
    from services.migrations import MigrationEngine, load_migrations

    result = MigrationEngine(db_engine, load_migrations(MIGRATIONS_DIR)).run()
    assert result.ok, result.describe()
    return db_engine


@pytest.fixture
def session_factory(migrated_db):
    from db.session import make_session_factory
    return make_session_factory(migrated_db)


# =============================================================================
# APP
# =============================================================================

@pytest.fixture
def app_config(database_url, bindings_path):
    return {
        "TESTING": True,
        "DATABASE_URL": database_url,
        "CONTRACT_PATH": str(CONTRACT_DIR),
        "BINDINGS_PATH": str(bindings_path),
        "MIGRATIONS_DIR": str(MIGRATIONS_DIR),
        "JWT_SECRET": TEST_JWT_SECRET,
        "JWT_ALGORITHM": "HS256",
        "JWT_JWKS_URL": "",
        "JWT_AUDIENCE": None,
        "JWT_ISSUER": None,
        "JWT_ROLES_CLAIM": "roles",
        "CDN_BASE_URL": TEST_CDN,
        "CORS_ORIGINS": ["*"],
        "DB_WARMUP": False,
        "REQUIRE_CURRENT_SCHEMA": True,
    }


@pytest.fixture
def app(migrated_db, app_config):
    """Create test Flask application against a fully migrated database."""
    from app import create_app

    app = create_app(app_config)
    yield app
    app.extensions["lockstep"].engine.dispose()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def make_token():
    def _make(sub="user-1", roles=(), expires_in=3600, secret=TEST_JWT_SECRET, **claims):
        payload = {"exp": int(time.time()) + expires_in, "roles": list(roles), **claims}
        if sub is not None:
            payload["sub"] = sub
        return jwt.encode(payload, secret, algorithm="HS256")
    return _make


@pytest.fixture
def auth(make_token):
    """auth("U1", roles=["admin"]) -> headers dict with a bearer token."""
    def _auth(sub="user-1", roles=()):
        return {"Authorization": f"Bearer {make_token(sub=sub, roles=roles)}"}
    return _auth


@pytest.fixture(scope="session")
def jwt_secret():
    return TEST_JWT_SECRET


@pytest.fixture
def contract_copy(tmp_path):
    """
    contract_copy(mutate) -> path of an edited copy of the repo contract.

    `mutate` receives {filename: parsed YAML} and edits it in place.
    """
    def _copy(mutate=None, name="contract"):
        target = tmp_path / name
        shutil.copytree(CONTRACT_DIR, target)
        if mutate is not None:
            docs = {p.name: yaml.safe_load(p.read_text(encoding="utf-8")) for p in target.glob("*.yaml")}
            mutate(docs)
            for filename, doc in docs.items():
                (target / filename).write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        return target
    return _copy
