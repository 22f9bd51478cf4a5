"""
Request ID middleware - correlate one request across logs.

A caller-supplied X-Request-ID is kept when it looks like an id; anything
else is replaced by a fresh uuid4. The id lives on g.request_id for log
records and goes back in the X-Request-ID response header. Response bodies
never carry it.
"""

import re
import uuid
from typing import Optional

from flask import Flask, request, g

REQUEST_ID_HEADER = 'X-Request-ID'

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def accept_request_id(candidate: Optional[str]) -> str:
    """The caller's id if well-formed, else a new uuid4."""
    if candidate and _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


def setup_request_id_middleware(app: Flask) -> None:
    """Assign g.request_id before each request and echo it on the response."""

    @app.before_request
    def assign_request_id():
        g.request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))

    @app.after_request
    def echo_request_id(response):
        request_id = g.get('request_id')
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response
