"""Tests for the REST error envelope installed by register_error_handlers."""

import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from echorelay.api.middleware.error_handler import register_error_handlers
from echorelay.core.exceptions import (
    CaptureFailureError,
    InvalidAudioUnitError,
    ProtocolError,
    SessionNotFoundError,
)


@pytest.fixture
def client():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/protocol")
    async def protocol_failure():
        raise ProtocolError("Frame header is not valid JSON")

    @app.get("/unit")
    async def empty_unit():
        raise InvalidAudioUnitError()

    @app.get("/capture")
    async def capture_failure():
        raise CaptureFailureError("device unplugged")

    @app.get("/sessions/{session_id}")
    async def session(session_id: int):
        raise SessionNotFoundError(session_id)

    @app.get("/crash")
    async def crash():
        raise RuntimeError("boom")

    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.parametrize(
    ("path", "status", "code", "detail"),
    [
        ("/protocol", 400, "PROTOCOL_ERROR", "Frame header is not valid JSON"),
        ("/unit", 422, "INVALID_AUDIO_UNIT", "Audio unit is empty"),
        ("/sessions/5", 404, "SESSION_NOT_FOUND", "Session not found: 5"),
    ],
)
def test_relay_errors_keep_their_status_and_code(client, path, status, code, detail):
    resp = client.get(path)

    assert resp.status_code == status
    body = resp.json()
    assert body["code"] == code
    assert body["detail"] == detail
    assert body["timestamp"]


def test_server_side_relay_error_is_logged_as_warning(client, caplog):
    with caplog.at_level(logging.WARNING, logger="echorelay.api.middleware.error_handler"):
        resp = client.get("/capture")

    assert resp.status_code == 500
    assert resp.json()["code"] == "CAPTURE_FAILURE"
    assert "CAPTURE_FAILURE on /capture" in caplog.text


def test_validation_error_names_the_field(client):
    resp = client.get("/sessions/abc")

    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["detail"].startswith("session_id: ")


def test_unhandled_error_hides_the_message(client, caplog):
    with caplog.at_level(logging.ERROR, logger="echorelay.api.middleware.error_handler"):
        resp = client.get("/crash")

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert "boom" not in body["detail"]
    assert "Unhandled error on GET /crash" in caplog.text
