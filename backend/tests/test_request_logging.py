import logging

from flask import Flask, jsonify

from api.middleware.request_logging import setup_request_logging_middleware


def _build_test_app(**config):
    app = Flask(__name__)
    app.config.update(TESTING=True, **config)

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"data": {"status": "ok"}})

    @app.route("/api/things", methods=["GET"])
    def things():
        return jsonify({"data": []})

    @app.route("/static-page", methods=["GET"])
    def page():
        return "ok"

    setup_request_logging_middleware(app)
    return app


def _logged(caplog, path):
    return any(f"api_request path={path}" in record.getMessage() for record in caplog.records)


def test_request_logging_sample_rate(caplog):
    app = _build_test_app(REQUEST_LOG_SAMPLE_RATE=1.0, REQUEST_LOG_ENDPOINTS=[])
    client = app.test_client()

    with caplog.at_level(logging.INFO, logger="api.request"):
        response = client.get("/api/health")

    assert response.status_code == 200
    assert _logged(caplog, "/api/health")
    message = next(r.getMessage() for r in caplog.records if "api_request" in r.getMessage())
    assert "method=GET" in message
    assert "status=200" in message
    assert "duration_ms=" in message


def test_request_logging_watchlist(caplog):
    app = _build_test_app(REQUEST_LOG_SAMPLE_RATE=0.0, REQUEST_LOG_ENDPOINTS=["/api/health"])
    client = app.test_client()

    with caplog.at_level(logging.INFO, logger="api.request"):
        client.get("/api/health")
        client.get("/api/things")

    assert _logged(caplog, "/api/health")
    assert not _logged(caplog, "/api/things")


def test_request_logging_zero_sample_rate(caplog):
    app = _build_test_app(REQUEST_LOG_SAMPLE_RATE=0.0, REQUEST_LOG_ENDPOINTS=[])

    with caplog.at_level(logging.INFO, logger="api.request"):
        app.test_client().get("/api/health")

    assert not _logged(caplog, "/api/health")


def test_request_logging_disabled(caplog):
    app = _build_test_app(REQUEST_LOG_ENABLED=False)

    with caplog.at_level(logging.INFO, logger="api.request"):
        app.test_client().get("/api/health")

    assert not _logged(caplog, "/api/health")


def test_non_api_paths_not_logged(caplog):
    app = _build_test_app()

    with caplog.at_level(logging.INFO, logger="api.request"):
        app.test_client().get("/static-page")

    assert not _logged(caplog, "/static-page")


def test_logs_operation_and_subject(client, auth, caplog):
    with caplog.at_level(logging.INFO, logger="api.request"):
        client.get("/api/things", headers=auth("U7"))

    message = next(r.getMessage() for r in caplog.records if r.name == "api.request")
    assert "operation=listThings" in message
    assert "subject=U7" in message
