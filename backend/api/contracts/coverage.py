"""
Route coverage - every contract operation has exactly one matching route.

Checked at startup (create_app) so a handler bound to an unknown
operation, an operation with no handler, or a handler mounted at a path or
method the contract does not declare fails the deploy, not a request.
"""

import re
from typing import Dict, List, Tuple

from flask import Flask

from errors import ContractError

from .document import Contract


_FLASK_PARAM = re.compile(r"<(?:[^:<>]+:)?[^<>]+>")
_CONTRACT_PARAM = re.compile(r"\{[^{}]+\}")


def normalize_path(path: str) -> str:
    """Compare paths by shape: every path parameter becomes `{}`."""
    return _CONTRACT_PARAM.sub("{}", _FLASK_PARAM.sub("{}", path))


def bound_routes(app: Flask) -> Dict[str, List[Tuple[str, str]]]:
    """operationId -> [(METHOD, normalized path)] for every @api_contract view."""
    bound: Dict[str, List[Tuple[str, str]]] = {}
    for rule in app.url_map.iter_rules():
        view = app.view_functions.get(rule.endpoint)
        operation_id = getattr(view, "operation_id", None)
        if operation_id is None:
            continue
        for method in sorted(rule.methods - {"HEAD", "OPTIONS"}):
            bound.setdefault(operation_id, []).append((method, normalize_path(rule.rule)))
    return bound


def check_route_coverage(app: Flask, contract: Contract) -> None:
    """
    Raises:
        ContractError: With details {"missing", "unknown", "mismatched"}
    """
    bound = bound_routes(app)
    missing = sorted(op_id for op_id in contract.operations if op_id not in bound)
    unknown = sorted(op_id for op_id in bound if op_id not in contract.operations)

    mismatched = []
    for op_id, routes in sorted(bound.items()):
        op = contract.operations.get(op_id)
        if op is None:
            continue
        expected = (op.method, normalize_path(op.path))
        if routes != [expected]:
            mismatched.append({
                "operation": op_id,
                "expected": f"{expected[0]} {expected[1]}",
                "found": [f"{m} {p}" for m, p in routes],
            })

    if missing or unknown or mismatched:
        raise ContractError(
            "Routes do not match the contract",
            details={"missing": missing, "unknown": unknown, "mismatched": mismatched},
        )
