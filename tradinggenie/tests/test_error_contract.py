"""Tests for normalized error responses."""
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tradinggenie.core.config import Settings, validate_config
from tradinggenie.core.errors import (
    AppError,
    NotFoundError,
    app_error_handler,
    unhandled_exception_handler,
)
from tradinggenie.core.logging import JsonFormatter, log_event
from tradinggenie.core.middleware.request_id import RequestIdMiddleware


def _app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("User not found")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    return app


def test_app_error_has_standard_shape():
    client = TestClient(_app())
    resp = client.get("/missing")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"]["code"] == "not_found"
    assert body["error"]["message"] == "User not found"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_unhandled_error_leaks_no_detail():
    client = TestClient(_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert body["error"]["message"] == "Unexpected error"
    assert "hunter2" not in resp.text


def test_validate_config_strict_raises():
    cfg = Settings(_env_file=None, STRIPE_SECRET_KEY=None, STRIPE_WEBHOOK_SECRET=None, TELEGRAM_BOT_TOKEN=None)
    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=cfg)
    assert "STRIPE_SECRET_KEY" in str(exc.value)


def test_validate_config_warns_without_secret_values(caplog):
    cfg = Settings(
        _env_file=None,
        STRIPE_SECRET_KEY="sk_live_supersecret",
        STRIPE_WEBHOOK_SECRET=None,
        TELEGRAM_BOT_TOKEN=None,
        ADMIN_KEY="admin",
    )
    with caplog.at_level(logging.WARNING, logger="tradinggenie"):
        assert validate_config(strict=False, settings_obj=cfg) is True
    assert "STRIPE_WEBHOOK_SECRET" in caplog.text
    assert "sk_live_supersecret" not in caplog.text


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("tradinggenie", logging.INFO, __file__, 1, "webhook.ignored", (), None)
    record.request_id = "rid-1"
    record.event_type = "customer.created"
    line = JsonFormatter().format(record)
    assert '"request_id": "rid-1"' in line
    assert '"event_type": "customer.created"' in line


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="tradinggenie"):
        log_event("info", "test.event", request_id="rid-2", extra={"blob": "x" * 1000})
    record = caplog.records[-1]
    assert record.request_id == "rid-2"
    assert record.blob.endswith("...<truncated>")
