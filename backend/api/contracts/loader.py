"""
Contract loader - reads the hand-edited YAML contract into a Contract.

Accepts a single file or a directory of fragments (*.yaml / *.yml, merged in
sorted file-name order). Each fragment may carry:

    info:        {title, version}          (at most one distinct value overall)
    security:    [...]                     (default for operations; [] = public)
    paths:       {path: {method: operation}}
    components:  {schemas: {Name: {type: object, properties, required}}}

Schemas are de-duplicated by name: the same name defined in two fragments is
accepted only when both definitions are identical.
"""

import logging
from collections.abc import Hashable
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from errors import ContractError

from .document import (
    CONSTRAINT_KEYS,
    REF_PREFIX,
    SUPPORTED_FORMATS,
    SUPPORTED_TYPES,
    Contract,
    Operation,
    PropertySpec,
    SchemaDef,
    build_contract,
)


logger = logging.getLogger('api.contracts')

HTTP_METHODS = ("get", "post", "put", "patch", "delete")


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects a key repeated within one mapping."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark,
                    f"found duplicate key '{key}'", key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_contract(path: Union[str, Path]) -> Contract:
    """
    Load and validate the contract at `path`.

    Args:
        path: YAML file, or directory of YAML fragments

    Returns:
        Validated Contract

    Raises:
        ContractError: unreadable YAML, missing version, duplicate operationId,
            undefined/colliding/circular schemas, unsupported property shapes
    """
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml"))
        if not files:
            raise ContractError(f"No contract fragments found in {path}")
    elif path.is_file():
        files = [path]
    else:
        raise ContractError(f"Contract not found: {path}")

    fragments = [(f.name, _read_yaml(f)) for f in files]
    contract = parse_fragments(fragments)
    logger.info(
        "contract_loaded version=%s schemas=%d operations=%d digest=%s",
        contract.version, len(contract.schemas), len(contract.operations), contract.digest[:12],
    )
    return contract


def parse_fragments(fragments: List[Tuple[str, Dict[str, Any]]]) -> Contract:
    """Merge already-parsed fragments (source name, document) into a Contract."""
    info: Optional[Dict[str, Any]] = None
    info_source = ""
    schemas: Dict[str, SchemaDef] = {}
    operations: Dict[str, Operation] = {}
    routes: Dict[Tuple[str, str], str] = {}

    for source, doc in fragments:
        if not isinstance(doc, dict):
            raise ContractError(f"{source}: contract fragment must be a mapping")

        if "info" in doc:
            if info is not None and doc["info"] != info:
                raise ContractError(
                    f"{source}: conflicting 'info' block (already defined in {info_source})"
                )
            info, info_source = doc["info"], source

        for schema in _parse_schemas(doc, source):
            existing = schemas.get(schema.name)
            if existing is not None and existing != schema:
                raise ContractError(
                    f"Schema name collision: '{schema.name}' is defined with different "
                    f"shapes in {existing.source} and {source}",
                    details={"schema": schema.name, "sources": [existing.source, source]},
                )
            schemas.setdefault(schema.name, schema)

        default_security = doc.get("security")
        for op in _parse_operations(doc, source, default_security):
            if op.operation_id in operations:
                raise ContractError(
                    f"Duplicate operationId '{op.operation_id}' "
                    f"({operations[op.operation_id].source} and {source})"
                )
            route = (op.method, op.path)
            if route in routes:
                raise ContractError(f"{source}: {op.method} {op.path} is already defined by '{routes[route]}'")
            routes[route] = op.operation_id
            operations[op.operation_id] = op

    if not info or not info.get("version"):
        raise ContractError("Contract is missing info.version")

    return build_contract(
        title=str(info.get("title", "")),
        version=str(info["version"]),
        schemas=schemas,
        operations=operations,
    )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            return yaml.load(f, Loader=_UniqueKeyLoader) or {}
    except yaml.YAMLError as e:
        raise ContractError(f"{path.name}: invalid YAML: {e}")
    except OSError as e:
        raise ContractError(f"{path.name}: cannot read contract: {e}")


def _ref_name(ref: str, where: str) -> str:
    if not isinstance(ref, str) or not ref.startswith(REF_PREFIX):
        raise ContractError(f"{where}: unsupported $ref '{ref}' (expected {REF_PREFIX}<Name>)")
    return ref[len(REF_PREFIX):]


# =============================================================================
# SCHEMAS
# =============================================================================

def _parse_schemas(doc: Dict[str, Any], source: str) -> List[SchemaDef]:
    raw_schemas = (doc.get("components") or {}).get("schemas") or {}
    result = []
    for name, raw in raw_schemas.items():
        where = f"{source}: schema '{name}'"
        if not isinstance(raw, dict) or raw.get("type", "object") != "object":
            raise ContractError(f"{where}: named schemas must be objects")

        properties = raw.get("properties") or {}
        required = set(raw.get("required") or [])
        unknown_required = required - set(properties)
        if unknown_required:
            raise ContractError(
                f"{where}: required lists undeclared properties {sorted(unknown_required)}"
            )

        props = tuple(
            _parse_property(prop_name, prop_raw, f"{where}.{prop_name}", prop_name in required)
            for prop_name, prop_raw in properties.items()
        )
        result.append(SchemaDef(
            name=str(name),
            properties=props,
            description=str(raw.get("description", "")).strip(),
            source=source,
        ))
    return result


def _parse_property(name: str, raw: Any, where: str, required: bool) -> PropertySpec:
    if not isinstance(raw, dict):
        raise ContractError(f"{where}: property definition must be a mapping")

    nullable = bool(raw.get("nullable", False))
    description = str(raw.get("description", "")).strip()

    if "$ref" in raw:
        return PropertySpec(
            name=name,
            ref=_ref_name(raw["$ref"], where),
            nullable=nullable,
            required=required,
            description=description,
        )

    type_ = raw.get("type")
    if type_ not in SUPPORTED_TYPES:
        raise ContractError(f"{where}: unsupported type '{type_}'")

    items = None
    if type_ == "array":
        if "items" not in raw:
            raise ContractError(f"{where}: array properties need 'items'")
        items = _parse_property("items", raw["items"], f"{where}[]", required=True)
    elif type_ == "object" and raw.get("properties"):
        raise ContractError(
            f"{where}: inline object schemas are not supported; declare a named schema and $ref it"
        )

    fmt = raw.get("format")
    if fmt is not None and fmt not in SUPPORTED_FORMATS:
        raise ContractError(f"{where}: unsupported format '{fmt}'")

    enum = raw.get("enum")
    if enum is not None:
        if type_ not in ("string", "integer") or not isinstance(enum, list) or not enum:
            raise ContractError(f"{where}: enum must be a non-empty list on a string/integer property")
        enum = tuple(enum)

    constraints = tuple((key, raw[key]) for key in CONSTRAINT_KEYS if key in raw)

    return PropertySpec(
        name=name,
        type=type_,
        items=items,
        format=fmt,
        enum=enum,
        nullable=nullable,
        required=required,
        description=description,
        constraints=constraints,
    )


# =============================================================================
# OPERATIONS
# =============================================================================

def _parse_operations(doc: Dict[str, Any], source: str, default_security: Any) -> List[Operation]:
    result = []
    for path, methods in (doc.get("paths") or {}).items():
        if not isinstance(methods, dict):
            raise ContractError(f"{source}: path '{path}' must map methods to operations")
        for method, raw in methods.items():
            if method.lower() not in HTTP_METHODS:
                raise ContractError(f"{source}: unsupported method '{method}' on {path}")
            result.append(_parse_operation(str(path), method.upper(), raw, source, default_security))
    return result


def _parse_operation(path: str, method: str, raw: Dict[str, Any], source: str, default_security: Any) -> Operation:
    where = f"{source}: {method} {path}"
    op_id = raw.get("operationId")
    if not op_id:
        raise ContractError(f"{where}: operationId is required")

    request_schema = None
    body = raw.get("requestBody")
    if body:
        request_schema = _json_schema_ref(body, f"{where} requestBody")

    query_schema = None
    if raw.get("x-query"):
        query_schema = _ref_name(raw["x-query"].get("$ref"), f"{where} x-query")

    responses = raw.get("responses") or {}
    statuses = sorted(int(code) for code in responses)
    success = [code for code in statuses if 200 <= code < 300]
    if len(success) != 1:
        raise ContractError(f"{where}: exactly one 2xx response is required, found {success}")
    success_status = success[0]

    response_schema = None
    response_is_list = False
    success_raw = responses.get(success_status, responses.get(str(success_status))) or {}
    if success_status == 204:
        if success_raw.get("content"):
            raise ContractError(f"{where}: 204 responses cannot declare content")
    else:
        schema = _json_schema(success_raw, f"{where} {success_status}")
        if schema.get("type") == "array":
            response_is_list = True
            response_schema = _ref_name((schema.get("items") or {}).get("$ref"), f"{where} {success_status}")
        else:
            response_schema = _ref_name(schema.get("$ref"), f"{where} {success_status}")

    security = raw.get("security", default_security)

    return Operation(
        operation_id=str(op_id),
        method=method,
        path=path,
        request_schema=request_schema,
        query_schema=query_schema,
        response_schema=response_schema,
        response_is_list=response_is_list,
        success_status=success_status,
        error_statuses=tuple(code for code in statuses if code >= 400),
        requires_auth=bool(security),
        summary=str(raw.get("summary", "")).strip(),
        source=source,
    )


def _json_schema(container: Dict[str, Any], where: str) -> Dict[str, Any]:
    content = (container.get("content") or {}).get("application/json") or {}
    schema = content.get("schema")
    if not isinstance(schema, dict):
        raise ContractError(f"{where}: application/json schema is required")
    return schema


def _json_schema_ref(container: Dict[str, Any], where: str) -> str:
    return _ref_name(_json_schema(container, where).get("$ref"), where)
