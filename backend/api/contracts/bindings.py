"""
Generated bindings - loading and drift checks.

The bindings module is a disposable artifact produced by generate.py.
The app imports it from a file path and refuses it unless its
CONTRACT_DIGEST matches the loaded contract, so bindings can never
silently lag the contract they claim to describe.

BindingSet.get() only hands out classes the generated module declares in
SCHEMA_NAMES; there is no way to register a hand-written type in its place.
"""

import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Tuple, Type, Union

from pydantic import BaseModel

from errors import ContractError

from .document import Contract
from .generate import GENERATED_MARKER, render_bindings


logger = logging.getLogger('api.contracts')


class BindingSet:
    """Read-only lookup of generated binding classes by schema name."""

    def __init__(self, module: ModuleType):
        self._module = module
        self._names: Tuple[str, ...] = tuple(module.SCHEMA_NAMES)

    @property
    def version(self) -> str:
        return self._module.CONTRACT_VERSION

    @property
    def digest(self) -> str:
        return self._module.CONTRACT_DIGEST

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def get(self, name: str) -> Type[BaseModel]:
        """
        Get the generated class for schema `name`.

        Raises:
            ContractError: If the bindings declare no such schema
        """
        if name not in self._names:
            raise ContractError(f"No generated binding for schema '{name}'")
        return getattr(self._module, name)

    def is_binding(self, value, name: str) -> bool:
        """True if `value` is an instance of the generated class for `name`."""
        return type(value) is self.get(name)


def load_bindings(path: Union[str, Path], contract: Contract) -> BindingSet:
    """
    Import the generated bindings at `path` and verify they match `contract`.

    Raises:
        ContractError: If the file is missing, not generated, fails to import,
            or was generated from a different contract
    """
    path = Path(path)
    if not path.is_file():
        raise ContractError(
            f"Bindings not found at {path}. "
            "Generate them with: python backend/cli.py contract generate"
        )

    with open(path, encoding="utf-8") as f:
        first_line = f.readline().rstrip("\n")
    if first_line != GENERATED_MARKER:
        raise ContractError(f"{path} is not a generated bindings module")

    module_name = f"_lockstep_bindings_{contract.digest[:16]}"
    module = sys.modules.get(module_name)
    if module is None or getattr(module, "__file__", None) != str(path):
        module = _import_from_path(module_name, path)

    digest = getattr(module, "CONTRACT_DIGEST", None)
    if digest != contract.digest:
        raise ContractError(
            f"Bindings at {path} are stale: generated from digest {str(digest)[:12]}, "
            f"contract {contract.version} has digest {contract.digest[:12]}. "
            "Regenerate with: python backend/cli.py contract generate",
            details={"bindings_digest": digest, "contract_digest": contract.digest},
        )

    logger.info("bindings_loaded path=%s version=%s", path, contract.version)
    return BindingSet(module)


def _import_from_path(module_name: str, path: Path) -> ModuleType:
    spec = importlib.util.spec_from_file_location(module_name, str(path))
    if spec is None or spec.loader is None:
        raise ContractError(f"Cannot import bindings from {path}")
    module = importlib.util.module_from_spec(spec)
    # pydantic resolves forward references through sys.modules
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise ContractError(f"Bindings at {path} failed to import: {e}")
    return module


def check_bindings(contract: Contract, path: Union[str, Path]) -> bool:
    """True if the file at `path` is exactly what the generator would write now."""
    path = Path(path)
    if not path.is_file():
        return False
    return path.read_bytes() == render_bindings(contract).encode("utf-8")
