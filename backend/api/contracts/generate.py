"""
Binding generator - renders the contract into a Python module of pydantic models.

One model per schema name, shared by every operation that references it.
Rendering is deterministic and total: the same Contract always produces
byte-identical source (schemas sorted by name, fields in declaration order,
no timestamps), so regenerated bindings diff cleanly in review.

Writing is all-or-nothing: the module is rendered in memory first, so a
ContractError never touches the previous file, then swapped in with
os.replace(). There is no incremental merge.
"""

import keyword
import logging
import os
import re
import sys
import tempfile
import types
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel

from errors import ContractError

from .document import Contract, PropertySpec, SchemaDef


logger = logging.getLogger('api.contracts')

GENERATED_MARKER = "# Code generated by lockstep from the API contract. DO NOT EDIT."

# Builtins the generated annotations refer to
ANNOTATION_BUILTINS = {"str", "int", "float", "bool"}

# Names the generated module defines or imports itself
RESERVED_SCHEMA_NAMES = ANNOTATION_BUILTINS | {
    "Any", "BaseModel", "ConfigDict", "Dict", "Field", "List", "Literal", "Optional",
    "date", "datetime", "annotations",
    "CONTRACT_TITLE", "CONTRACT_VERSION", "CONTRACT_DIGEST", "SCHEMA_NAMES",
}

# Field names that would shadow an annotation name or a BaseModel attribute
RESERVED_FIELD_NAMES = {"date", "datetime"} | ANNOTATION_BUILTINS | {n for n in dir(BaseModel) if not n.startswith("__")}

PYDANTIC_CONSTRAINTS = {
    "minLength": "min_length",
    "maxLength": "max_length",
    "minItems": "min_length",
    "maxItems": "max_length",
    "minimum": "ge",
    "maximum": "le",
    "pattern": "pattern",
}

STRING_FORMATS = {
    "date-time": "datetime",
    "date": "date",
}

SCALARS = {
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "object": "Dict[str, Any]",
}


@dataclass(frozen=True)
class BindingWriteResult:
    path: Path
    digest: str
    changed: bool


def python_field_name(name: str) -> str:
    """camelCase / kebab-case contract names -> snake_case attribute names."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name.replace("-", "_"))
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()
    if keyword.iskeyword(snake) or snake in RESERVED_FIELD_NAMES or snake.startswith("model_"):
        snake += "_"
    return snake


def _type_expr(prop: PropertySpec) -> str:
    if prop.ref:
        base = prop.ref
    elif prop.type == "array":
        base = f"List[{_type_expr(prop.items)}]"
    elif prop.enum is not None:
        base = "Literal[" + ", ".join(repr(v) for v in prop.enum) + "]"
    elif prop.type == "string":
        base = STRING_FORMATS.get(prop.format, "str")
    else:
        base = SCALARS[prop.type]

    if prop.nullable:
        return f"Optional[{base}]"
    return base


def _field_line(prop: PropertySpec, attr: str) -> str:
    args = ["..." if prop.required else "None"]
    if attr != prop.name:
        args.append(f"alias={prop.name!r}")
    for key, value in prop.constraints:
        args.append(f"{PYDANTIC_CONSTRAINTS[key]}={value!r}")
    if prop.description:
        args.append(f"description={prop.description!r}")
    return f"    {attr}: {_type_expr(prop)} = Field({', '.join(args)})"


def _render_schema(schema: SchemaDef) -> List[str]:
    if not schema.name.isidentifier() or keyword.iskeyword(schema.name) \
            or schema.name in RESERVED_SCHEMA_NAMES or schema.name.startswith("_"):
        raise ContractError(f"Schema name '{schema.name}' cannot be used as a binding type name")

    lines = [f"class {schema.name}(_Binding):"]
    if schema.description:
        lines.append(f"    {schema.description!r}")
    if schema.properties:
        if schema.description:
            lines.append("")
        seen = {}
        for prop in schema.properties:
            attr = python_field_name(prop.name)
            if not attr.isidentifier():
                raise ContractError(f"{schema.name}.{prop.name}: not expressible as a field name")
            if attr in seen:
                raise ContractError(
                    f"{schema.name}: properties '{seen[attr]}' and '{prop.name}' "
                    f"both map to field '{attr}'"
                )
            seen[attr] = prop.name
            lines.append(_field_line(prop, attr))
    elif not schema.description:
        lines.append("    pass")
    return lines


def render_bindings(contract: Contract) -> str:
    """
    Render the bindings module source for `contract`.

    Raises:
        ContractError: If a schema or field name cannot be expressed in Python
    """
    names = sorted(contract.schemas)
    out = [
        GENERATED_MARKER,
        "# Regenerate with: python backend/cli.py contract generate",
        f'"""Contract bindings for {contract.title or "API"} {contract.version}."""',
        "",
        "from __future__ import annotations",
        "",
        "from datetime import date, datetime",
        "from typing import Any, Dict, List, Literal, Optional",
        "",
        "from pydantic import BaseModel, ConfigDict, Field",
        "",
        f"CONTRACT_TITLE = {contract.title!r}",
        f"CONTRACT_VERSION = {contract.version!r}",
        f"CONTRACT_DIGEST = {contract.digest!r}",
        "SCHEMA_NAMES = (",
    ]
    out.extend(f"    {name!r}," for name in names)
    out.extend([
        ")",
        "",
        "",
        "class _Binding(BaseModel):",
        "    model_config = ConfigDict(frozen=True, extra='forbid', populate_by_name=True, strict=True)",
    ])

    for name in names:
        out.extend(["", ""])
        out.extend(_render_schema(contract.schemas[name]))

    out.extend(["", ""])
    out.extend(f"{name}.model_rebuild()" for name in names)
    return "\n".join(out) + "\n"


def write_bindings(contract: Contract, path: Union[str, Path]) -> BindingWriteResult:
    """
    Regenerate the bindings file at `path`, replacing it wholesale.

    Rendering and an import check of the rendered module both happen
    before any filesystem change, so a ContractError leaves the previous
    bindings intact.
    """
    path = Path(path)
    rendered = render_bindings(contract)
    _check_importable(rendered, contract, path)
    source = rendered.encode("utf-8")

    path.parent.mkdir(parents=True, exist_ok=True)
    previous = path.read_bytes() if path.exists() else None

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(source)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    changed = previous != source
    logger.info(
        "bindings_written path=%s version=%s digest=%s changed=%s",
        path, contract.version, contract.digest[:12], changed,
    )
    return BindingWriteResult(path=path, digest=contract.digest, changed=changed)


def _check_importable(source: str, contract: Contract, path: Path) -> None:
    """Execute the rendered module in a scratch namespace; pydantic builds every model."""
    module_name = f"_lockstep_render_check_{contract.digest[:16]}"
    module = types.ModuleType(module_name)
    module.__file__ = str(path)
    # pydantic resolves forward references through sys.modules
    sys.modules[module_name] = module
    try:
        exec(compile(source, str(path), "exec"), module.__dict__)
    except Exception as e:
        raise ContractError(
            f"Rendered bindings for contract {contract.version} do not import: {e}",
            details={"path": str(path)},
        )
    finally:
        sys.modules.pop(module_name, None)
