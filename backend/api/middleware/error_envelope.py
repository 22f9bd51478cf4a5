"""
Error envelope middleware - the only place errors become responses.

Every failure leaves the app as:
{
    "error": "<message>",
    "details": {...}        # optional
}

- LockstepError subclasses carry their own status and details
- Werkzeug HTTP exceptions (404 route, 405 method) keep their status
- Anything else is a 500 with a fixed message; the exception is logged
  with full context and nothing internal reaches the caller
"""

import logging

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from errors import ContractError, LockstepError
from api.serializers.response import error_envelope


logger = logging.getLogger('api.middleware.error')

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


def _respond(body: dict, status: int):
    response = jsonify(body)
    response.status_code = status
    return response


def setup_error_handlers(app: Flask) -> None:
    """
    Set up the error envelope handlers on Flask app.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(LockstepError)
    def handle_taxonomy_error(error: LockstepError):
        request_id = getattr(g, 'request_id', None)
        operation = getattr(g.get('operation'), 'operation_id', None)

        if isinstance(error, ContractError) or error.http_status >= 500:
            # A handler broke its contract (or storage refused): caller sees a plain 500
            logger.error(
                "contract_or_server_error path=%s operation=%s err=%s",
                request.path, operation, error.message,
                extra={"event": "server_error", "request_id": request_id},
                exc_info=error,
            )
            return _respond(error_envelope(INTERNAL_ERROR_MESSAGE), 500)

        logger.info(
            "request_rejected path=%s operation=%s status=%d error=%s",
            request.path, operation, error.http_status, error.message,
            extra={"event": "request_rejected", "request_id": request_id},
        )
        return _respond(error.to_dict(), error.http_status)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Handle Flask/Werkzeug HTTP exceptions."""
        response = _respond(error_envelope(error.description or error.name), error.code or 500)
        if error.code == 405 and hasattr(error, "valid_methods") and error.valid_methods:
            response.headers['Allow'] = ", ".join(error.valid_methods)
        return response

    @app.errorhandler(Exception)
    def handle_generic_error(error: Exception):
        """Handle unhandled Python exceptions."""
        request_id = getattr(g, 'request_id', None)

        logger.exception(
            "Unhandled error: %s", type(error).__name__,
            extra={
                "event": "unhandled_error",
                "request_id": request_id,
                "error_type": type(error).__name__,
                "path": request.path,
            }
        )
        return _respond(error_envelope(INTERNAL_ERROR_MESSAGE), 500)
