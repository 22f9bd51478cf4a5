"""
Per-app state for the contract pipeline.

Everything a request needs (contract, bindings, engine, verifier) is built
once in create_app() and hung off app.extensions, never in module globals.
"""

from dataclasses import dataclass
from typing import Optional

from flask import Flask, current_app
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from api.contracts.bindings import BindingSet
from api.contracts.registry import ContractStore
from services.migrations.engine import MigrationEngine
from utils.jwt_verifier import TokenVerifier


EXTENSION_KEY = "lockstep"


@dataclass
class LockstepState:
    contracts: ContractStore
    bindings: BindingSet
    engine: Engine
    session_factory: sessionmaker
    verifier: Optional[TokenVerifier]
    migrations: MigrationEngine
    roles_claim: str = "roles"
    cdn_base_url: str = ""


def init_state(app: Flask, state: LockstepState) -> None:
    app.extensions[EXTENSION_KEY] = state


def get_state() -> LockstepState:
    """State of the app handling the current request."""
    return current_app.extensions[EXTENSION_KEY]
