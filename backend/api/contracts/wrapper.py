"""
@api_contract decorator - binds a route handler to one contract operation.

Usage:
    @things_bp.route("/things", methods=["POST"])
    @api_contract("createThing")
    def create_thing(body, identity):
        ...

The decorator:
1. Resolves the operation from the Contract Store
2. Resolves the caller through the identity gate (if the operation is secured)
3. Validates the JSON body / query string against the generated bindings
   (InvalidRequest -> 400 before the handler runs, so no service is invoked)
4. Calls the handler with keyword args: body, query, identity, path params
5. Checks the handler returned the operation's generated response binding
6. Wraps the result in the success envelope with the declared status code
"""

import functools
import logging
from typing import Any, Callable

from flask import Response, g, jsonify, request

from api.extension import get_state
from api.middleware.identity import current_identity
from api.serializers.response import Paginated, paginated_envelope, success_envelope
from errors import ContractError

from .validate import validate_body, validate_query


logger = logging.getLogger('api.contracts')


def api_contract(operation_id: str):
    """
    Decorator that enforces a contract operation on a route handler.

    Args:
        operation_id: The contract operationId (e.g., "createThing")
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> Response:
            state = get_state()
            operation = state.contracts.operation(operation_id)
            g.operation = operation

            if operation.requires_auth:
                kwargs["identity"] = current_identity()

            if operation.request_schema:
                kwargs["body"] = validate_body(
                    request.get_data(cache=True),
                    state.bindings.get(operation.request_schema),
                )
            if operation.query_schema:
                kwargs["query"] = validate_query(
                    request.args.to_dict(),
                    state.bindings.get(operation.query_schema),
                )

            result = fn(*args, **kwargs)

            response = _build_response(operation, state.bindings, result)
            response.headers['X-API-Contract-Version'] = state.contracts.version
            return response

        wrapper.operation_id = operation_id
        return wrapper
    return decorator


def _dump(bindings, schema_name: str, value: Any, operation_id: str):
    # Only the generated class may cross the boundary
    if not bindings.is_binding(value, schema_name):
        raise ContractError(
            f"Handler for '{operation_id}' returned {type(value).__name__}, "
            f"expected generated binding '{schema_name}'"
        )
    return value.model_dump(mode="json", by_alias=True)


def _build_response(operation, bindings, result: Any) -> Response:
    if operation.success_status == 204:
        if result is not None:
            raise ContractError(f"Handler for '{operation.operation_id}' must return None (204)")
        return Response(status=204)

    if operation.response_is_list:
        if not isinstance(result, Paginated):
            raise ContractError(
                f"Handler for '{operation.operation_id}' must return Paginated, got {type(result).__name__}"
            )
        items = [
            _dump(bindings, operation.response_schema, item, operation.operation_id)
            for item in result.items
        ]
        body = paginated_envelope(items, result.page, result.limit, result.total)
    else:
        body = success_envelope(
            _dump(bindings, operation.response_schema, result, operation.operation_id)
        )

    response = jsonify(body)
    response.status_code = operation.success_status
    return response
