"""
Contract document model - the parsed, validated form of the API contract.

The contract is hand-edited YAML (OpenAPI-shaped). This module holds the
immutable in-memory representation:
- PropertySpec: one field of a named schema
- SchemaDef: a named object schema (de-duplicated by name, never by shape)
- Operation: one endpoint (operationId -> request/response schema names)
- Contract: version + schemas + operations, with a stable digest

Invariants checked here (ContractError on violation):
- Every $ref points at a declared schema
- No cycle made only of required, non-nullable, non-array references
  (no finite value could satisfy it, so no binding can express it)
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from errors import ContractError


SCALAR_TYPES = ("string", "integer", "number", "boolean")
SUPPORTED_TYPES = SCALAR_TYPES + ("array", "object")
SUPPORTED_FORMATS = ("date-time", "date", "uuid", "uri", "email")

# Constraint keys carried through to bindings, in emission order
CONSTRAINT_KEYS = ("minLength", "maxLength", "minimum", "maximum", "minItems", "maxItems", "pattern")

REF_PREFIX = "#/components/schemas/"


@dataclass(frozen=True)
class PropertySpec:
    """Specification for a single schema property."""
    name: str
    type: Optional[str] = None             # None when the property is a $ref
    ref: Optional[str] = None              # target schema name
    items: Optional["PropertySpec"] = None  # element spec for arrays
    format: Optional[str] = None
    enum: Optional[Tuple[Any, ...]] = None
    nullable: bool = False
    required: bool = False
    description: str = ""
    constraints: Tuple[Tuple[str, Any], ...] = ()

    def referenced_schemas(self) -> List[str]:
        """Schema names this property reaches (directly or through array items)."""
        if self.ref:
            return [self.ref]
        if self.items is not None:
            return self.items.referenced_schemas()
        return []

    def shape(self) -> Dict[str, Any]:
        """Canonical, JSON-serializable form (used for collision checks and digests)."""
        return {
            "name": self.name,
            "type": self.type,
            "ref": self.ref,
            "items": self.items.shape() if self.items is not None else None,
            "format": self.format,
            "enum": list(self.enum) if self.enum is not None else None,
            "nullable": self.nullable,
            "required": self.required,
            "description": self.description,
            "constraints": [list(c) for c in self.constraints],
        }


@dataclass(frozen=True)
class SchemaDef:
    """A named object schema."""
    name: str
    properties: Tuple[PropertySpec, ...]
    description: str = ""
    source: str = field(default="", compare=False)

    def get_property(self, name: str) -> Optional[PropertySpec]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    @property
    def required_names(self) -> List[str]:
        return [p.name for p in self.properties if p.required]

    def shape(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "properties": [p.shape() for p in self.properties],
        }


@dataclass(frozen=True)
class Operation:
    """One endpoint of the contract."""
    operation_id: str
    method: str                            # upper-case HTTP method
    path: str                              # e.g. /api/things/{thingId}
    request_schema: Optional[str] = None
    query_schema: Optional[str] = None
    response_schema: Optional[str] = None
    response_is_list: bool = False
    success_status: int = 200
    error_statuses: Tuple[int, ...] = ()
    requires_auth: bool = True
    summary: str = ""
    source: str = field(default="", compare=False)

    def referenced_schemas(self) -> List[str]:
        return [
            name for name in (self.request_schema, self.query_schema, self.response_schema)
            if name
        ]

    def shape(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "request_schema": self.request_schema,
            "query_schema": self.query_schema,
            "response_schema": self.response_schema,
            "response_is_list": self.response_is_list,
            "success_status": self.success_status,
            "error_statuses": list(self.error_statuses),
            "requires_auth": self.requires_auth,
            "summary": self.summary,
        }


@dataclass(frozen=True)
class Contract:
    """Complete, validated API contract."""
    title: str
    version: str
    schemas: Mapping[str, SchemaDef]
    operations: Mapping[str, Operation]

    def canonical(self) -> Dict[str, Any]:
        return {
            "info": {"title": self.title, "version": self.version},
            "schemas": {name: self.schemas[name].shape() for name in sorted(self.schemas)},
            "operations": {
                op_id: self.operations[op_id].shape() for op_id in sorted(self.operations)
            },
        }

    @property
    def digest(self) -> str:
        """sha256 of the canonical JSON form; identical contracts share a digest."""
        blob = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def get_schema(self, name: str) -> SchemaDef:
        try:
            return self.schemas[name]
        except KeyError:
            raise ContractError(f"Schema '{name}' is not defined in contract {self.version}")

    def get_operation(self, operation_id: str) -> Operation:
        try:
            return self.operations[operation_id]
        except KeyError:
            raise ContractError(
                f"Operation '{operation_id}' is not defined in contract {self.version}"
            )


def build_contract(
    title: str,
    version: str,
    schemas: Mapping[str, SchemaDef],
    operations: Mapping[str, Operation],
) -> Contract:
    """Assemble a Contract and enforce the cross-reference invariants."""
    _check_references(schemas, operations)
    _check_cycles(schemas)
    return Contract(
        title=title,
        version=version,
        schemas={name: schemas[name] for name in sorted(schemas)},
        operations={op_id: operations[op_id] for op_id in sorted(operations)},
    )


def _check_references(
    schemas: Mapping[str, SchemaDef],
    operations: Mapping[str, Operation],
) -> None:
    undefined = []

    for schema in schemas.values():
        for prop in schema.properties:
            for target in prop.referenced_schemas():
                if target not in schemas:
                    undefined.append(f"{schema.name}.{prop.name} -> {target}")

    for op in operations.values():
        for target in op.referenced_schemas():
            if target not in schemas:
                undefined.append(f"{op.operation_id} -> {target}")

    if undefined:
        raise ContractError(
            f"{len(undefined)} undefined schema reference(s)",
            details={"undefined": sorted(undefined)},
        )


def _hard_edges(schema: SchemaDef) -> List[str]:
    """References that every valid instance must materialize."""
    return sorted(
        prop.ref for prop in schema.properties
        if prop.ref and prop.required and not prop.nullable
    )


def _check_cycles(schemas: Mapping[str, SchemaDef]) -> None:
    # Iterative DFS in sorted order so the reported cycle is stable
    WHITE, GREY, BLACK = 0, 1, 2
    colour = {name: WHITE for name in schemas}

    for root in sorted(schemas):
        if colour[root] != WHITE:
            continue
        stack = [(root, iter(_hard_edges(schemas[root])))]
        path = [root]
        colour[root] = GREY
        while stack:
            node, edges = stack[-1]
            nxt = next(edges, None)
            if nxt is None:
                colour[node] = BLACK
                stack.pop()
                path.pop()
                continue
            if colour[nxt] == GREY:
                cycle = path[path.index(nxt):] + [nxt]
                raise ContractError(
                    "Circular schema definition cannot be expressed: " + " -> ".join(cycle),
                    details={"cycle": cycle},
                )
            if colour[nxt] == WHITE:
                colour[nxt] = GREY
                path.append(nxt)
                stack.append((nxt, iter(_hard_edges(schemas[nxt]))))
