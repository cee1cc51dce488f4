from __future__ import annotations

import json
import logging
import sys

import structlog

from reduct.core.config import Settings
from reduct.core.logging import bind_request_context, build_formatter


def _record(message: str, *args, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="reduct.services.auth.otp",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=args,
        exc_info=exc_info,
    )


def test_json_lines_carry_context_and_service() -> None:
    formatter = build_formatter(Settings(log_json=True, app_name="reduct-test"))
    bind_request_context(request_id="req-42")
    try:
        line = formatter.format(_record("otp_email_send_failed email=%s", "a@example.com"))
    finally:
        structlog.contextvars.clear_contextvars()

    payload = json.loads(line)
    assert payload["event"] == "otp_email_send_failed email=a@example.com"
    assert payload["level"] == "warning"
    assert payload["logger"] == "reduct.services.auth.otp"
    assert payload["request_id"] == "req-42"
    assert "timestamp" in payload


def test_json_lines_render_exceptions() -> None:
    formatter = build_formatter(Settings(log_json=True))
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        line = formatter.format(_record("unhandled_exception", exc_info=sys.exc_info()))
    payload = json.loads(line)
    assert "RuntimeError: boom" in payload["exception"]


def test_text_format_is_key_value() -> None:
    formatter = build_formatter(Settings(log_json=False))
    line = formatter.format(_record("request_completed status=%s", 200))
    assert line.startswith("timestamp=")
    assert "level='warning'" in line
    assert "event='request_completed status=200'" in line
