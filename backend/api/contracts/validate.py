"""
Structural request validation against generated bindings.

Checks only what the binding declares:
- Required fields are present
- Types match (strict: no "5" -> 5 coercion in JSON bodies)
- Constraints (length, range, enum) hold
- No undeclared fields

Business rules never live here; they belong to services.
Failures raise InvalidRequest with details:
    {"field": "<first failing field>", "violations": [{field, error, message}, ...]}
"""

import json
from typing import Any, Dict, List, Mapping, Type

from pydantic import BaseModel, ValidationError

from errors import InvalidRequest


# pydantic error type -> contract violation code
ERROR_CODES = {
    "missing": "required_field_missing",
    "extra_forbidden": "undeclared_field",
    "json_invalid": "invalid_json",
    "model_type": "invalid_body",
    "model_attributes_type": "invalid_body",
}


def _field_path(loc) -> str:
    parts = [str(p) for p in loc]
    return ".".join(parts) if parts else "body"


def violations_from(exc: ValidationError) -> List[Dict[str, Any]]:
    """Convert a pydantic ValidationError into contract violation dicts."""
    violations = []
    for error in exc.errors(include_url=False):
        violations.append({
            "field": _field_path(error.get("loc", ())),
            "error": ERROR_CODES.get(error["type"], error["type"]),
            "message": error["msg"],
        })
    return violations


def _raise_invalid(violations: List[Dict[str, Any]], what: str) -> None:
    raise InvalidRequest(
        message=f"{len(violations)} {what} validation error(s)",
        details={"field": violations[0]["field"], "violations": violations},
    )


def validate_body(raw: bytes, binding: Type[BaseModel]) -> BaseModel:
    """
    Validate a raw JSON request body against a binding.

    An empty body is treated as an empty object, so missing required
    fields are reported by name rather than as a JSON error.

    Raises:
        InvalidRequest: If the body is not valid JSON or violates the binding
    """
    if not raw or not raw.strip():
        raw = b"{}"
    try:
        return binding.model_validate_json(raw)
    except ValidationError as e:
        _raise_invalid(violations_from(e), "body")


def validate_query(params: Mapping[str, Any], binding: Type[BaseModel]) -> BaseModel:
    """
    Validate query-string params against a binding.

    Query values arrive as strings, so numeric coercion is allowed here
    ("2" -> 2); everything else is as strict as body validation.

    Raises:
        InvalidRequest: If params violate the binding
    """
    try:
        return binding.model_validate(dict(params), strict=False)
    except ValidationError as e:
        _raise_invalid(violations_from(e), "query")


def validate_payload(payload: Mapping[str, Any], binding: Type[BaseModel]) -> BaseModel:
    """Validate an already-decoded JSON mapping (used by non-HTTP callers and tests)."""
    return validate_body(json.dumps(dict(payload)).encode("utf-8"), binding)
