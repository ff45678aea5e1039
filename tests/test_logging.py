"""
FlowVision
Tests — Logging setup.

Covers:
    - Request context (request id, tenant, user) stamped onto records
    - JSON and console formatters
    - LOG_FORMAT / AI_LOG_LEVEL handling in configure_logging
"""

import json
import logging

import pytest
from flask import g

from flowvision.auth import AuthenticatedUser
from flowvision.middleware.logging_config import (
    ConsoleFormatter,
    JSONFormatter,
    RequestContextFilter,
    configure_logging,
    record_fields,
)


def _record(msg="Queued %s operation", args=("insights",), **extra):
    record = logging.LogRecord("flowvision.ai.operation_queue", logging.INFO, __file__, 42, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestContextFilter:

    def test_stamps_request_fields(self, app):
        record = _record()
        with app.test_request_context("/api/v1/ai/async"):
            g.request_id = "req-1"
            g.current_user = AuthenticatedUser(email="alice@acme.io", role="editor", tenant_id="acme")
            assert RequestContextFilter().filter(record) is True
        assert (record.request_id, record.tenant_id, record.user) == ("req-1", "acme", "alice@acme.io")

    def test_explicit_extra_wins(self, app):
        record = _record(tenant_id="globex")
        with app.test_request_context("/"):
            g.current_user = AuthenticatedUser(email="alice@acme.io", role="editor", tenant_id="acme")
            RequestContextFilter().filter(record)
        assert record.tenant_id == "globex"

    def test_outside_a_request_nothing_is_added(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert record_fields(record) == {}


class TestFormatters:

    def test_json_line(self):
        record = _record(tenant_id="acme", operation_id="op_1", duration_ms=12.5)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Queued insights operation"
        assert entry["level"] == "INFO"
        assert entry["location"].endswith(":42")
        assert entry["tenant_id"] == "acme"
        assert entry["operation_id"] == "op_1"
        assert entry["duration_ms"] == 12.5
        assert "user" not in entry

    def test_console_line_tag(self):
        line = ConsoleFormatter(color=False).format(_record(tenant_id="acme", operation_id="op_1", duration_ms=12.4))
        assert line.endswith("flowvision.ai.operation_queue: Queued insights operation  [acme op=op_1 12ms]")

    def test_console_line_without_context(self):
        line = ConsoleFormatter(color=False).format(_record())
        assert line.endswith(": Queued insights operation")


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _restore_logging(self, app):
        yield
        logging.getLogger("flowvision.ai").setLevel(logging.NOTSET)
        configure_logging(app)

    def test_json_format_from_env(self, app, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        handler = configure_logging(app)
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().handlers == [handler]
        assert any(isinstance(f, RequestContextFilter) for f in handler.filters)

    def test_text_is_default_in_tests(self, app, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        assert isinstance(configure_logging(app).formatter, ConsoleFormatter)

    def test_ai_level_override(self, app, monkeypatch):
        monkeypatch.setenv("AI_LOG_LEVEL", "warning")
        configure_logging(app)
        assert logging.getLogger("flowvision.ai").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING
