from unittest.mock import MagicMock, patch

import pytest
import structlog
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from labstock.common.middleware import get_client_ip, setup_logging_middleware


@pytest.fixture
def app():
    app = FastAPI()
    setup_logging_middleware(app)

    @app.get("/batches/probe")
    async def probe():
        return {"context": structlog.contextvars.get_contextvars()}

    @app.get("/error")
    async def error_endpoint():
        raise ValueError("ledger exploded")

    @app.get("/health")
    async def health_endpoint():
        return {"status": "ok"}

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_get_client_ip_x_forwarded_for():
    request = MagicMock(spec=Request)
    request.headers = {"X-Forwarded-For": "10.1.2.3, 10.0.0.1"}
    assert get_client_ip(request) == "10.1.2.3"


def test_get_client_ip_direct():
    request = MagicMock(spec=Request)
    request.headers = {}
    request.client.host = "127.0.0.1"
    assert get_client_ip(request) == "127.0.0.1"


def test_request_id_generated_when_absent(client):
    response = client.get("/batches/probe")
    assert len(response.headers["X-Request-ID"]) > 0


def test_request_id_bound_for_handlers(client):
    response = client.get("/batches/probe", headers={"X-Request-ID": "feed-run-9"})
    context = response.json()["context"]
    assert response.headers["X-Request-ID"] == "feed-run-9"
    assert context["trace_id"] == "feed-run-9"
    assert context["path"] == "/batches/probe"
    assert context["method"] == "GET"


def test_long_request_id_truncated(client):
    response = client.get("/batches/probe", headers={"X-Request-ID": "x" * 100})
    assert len(response.headers["X-Request-ID"]) == 64


@patch("labstock.common.middleware.logger")
def test_logs_request_with_duration(mock_logger, client):
    client.get("/batches/probe")
    assert mock_logger.debug.called
    _, kwargs = mock_logger.info.call_args
    assert kwargs["status_code"] == 200
    assert "duration_ms" in kwargs


@patch("labstock.common.middleware.logger")
def test_health_is_not_logged(mock_logger, client):
    client.get("/health")
    mock_logger.debug.assert_not_called()
    mock_logger.info.assert_not_called()


@patch("labstock.common.middleware.logger")
def test_logs_exception(mock_logger, client):
    with pytest.raises(ValueError):
        client.get("/error")
    _, kwargs = mock_logger.error.call_args
    assert kwargs["error"] == "ledger exploded"
    assert kwargs["exc_info"] is True


def test_context_cleared_after_request(client):
    client.get("/batches/probe")
    assert structlog.contextvars.get_contextvars() == {}


def test_operation_ref_bound_and_echoed(client):
    response = client.get("/batches/probe", headers={"X-Operation-Ref": "passage-17"})
    assert response.json()["context"]["operation_ref"] == "passage-17"
    assert response.headers["X-Operation-Ref"] == "passage-17"


def test_operation_ref_absent_is_not_bound(client):
    response = client.get("/batches/probe")
    assert "operation_ref" not in response.json()["context"]
    assert "X-Operation-Ref" not in response.headers
