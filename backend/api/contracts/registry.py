"""
Contract Store - single source of truth for the API contract at runtime.

Holds the loaded Contract and answers the questions the request pipeline
asks of it:
- which operation does this handler implement?
- which binding validates its request / shapes its response?

There is no module-level registry: the store lives on the Flask app
(see api.extension) and is replaced only by an explicit load().
"""

from pathlib import Path
from typing import List, Optional, Union

from .document import Contract, Operation, SchemaDef
from .loader import load_contract


class ContractStore:
    """Read-only view over one contract version."""

    def __init__(self, contract: Contract, source: Optional[Path] = None):
        self._contract = contract
        self._source = source

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ContractStore":
        """Load the contract at `path` (file or fragment directory)."""
        return cls(load_contract(path), source=Path(path))

    @property
    def contract(self) -> Contract:
        return self._contract

    @property
    def source(self) -> Optional[Path]:
        return self._source

    @property
    def version(self) -> str:
        return self._contract.version

    @property
    def digest(self) -> str:
        return self._contract.digest

    def operation(self, operation_id: str) -> Operation:
        """
        Get an operation by operationId.

        Raises:
            ContractError: If the operation is not in the contract
        """
        return self._contract.get_operation(operation_id)

    def schema(self, name: str) -> SchemaDef:
        return self._contract.get_schema(name)

    def list_operations(self) -> List[Operation]:
        """Operations sorted by operationId."""
        return list(self._contract.operations.values())

    def list_schemas(self) -> List[str]:
        return list(self._contract.schemas.keys())
