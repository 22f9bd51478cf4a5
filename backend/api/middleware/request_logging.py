"""
Request logging middleware - one line per API request, sampled.

Config keys (see config.Config):
  - REQUEST_LOG_ENABLED (default: true)
  - REQUEST_LOG_SAMPLE_RATE (default: 1.0)
  - REQUEST_LOG_ENDPOINTS (path prefixes to always log; disables sampling)
"""

import logging
import random
import time
from typing import List

from flask import Flask, g, request


logger = logging.getLogger("api.request")


def _should_log(path: str, watchlist: List[str], sample_rate: float) -> bool:
    if watchlist:
        return any(path.startswith(prefix) for prefix in watchlist)
    if sample_rate <= 0:
        return False
    if sample_rate >= 1:
        return True
    return random.random() <= sample_rate


def setup_request_logging_middleware(app: Flask) -> None:
    """Set up request logging middleware on Flask app."""
    if not app.config.get("REQUEST_LOG_ENABLED", True):
        return

    sample_rate = float(app.config.get("REQUEST_LOG_SAMPLE_RATE", 1.0))
    watchlist = list(app.config.get("REQUEST_LOG_ENDPOINTS") or [])

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()

    @app.after_request
    def _log_request(response):
        path = request.path
        if not path.startswith("/api"):
            return response

        if not _should_log(path, watchlist, sample_rate):
            return response

        duration_ms = None
        if hasattr(g, "request_start"):
            duration_ms = round((time.perf_counter() - g.request_start) * 1000, 2)

        operation = getattr(g.get("operation"), "operation_id", None)
        identity = g.get("identity")
        logger.info(
            "api_request path=%s method=%s operation=%s status=%s duration_ms=%s subject=%s request_id=%s",
            path,
            request.method,
            operation,
            response.status_code,
            duration_ms,
            identity.subject if identity is not None else None,
            getattr(g, "request_id", None),
        )
        return response
