from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from reduct.core.config import Settings, get_settings


_configured = False


def _add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", get_settings().app_name)
    return event_dict


def _shared_processors() -> list[Any]:
    # Applied to stdlib records before rendering; request-scoped context comes from contextvars.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
    ]


def build_formatter(settings: Settings) -> structlog.stdlib.ProcessorFormatter:
    """Render stdlib log records as JSON lines or key=value text."""
    if settings.log_json:
        renderer: Any = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "logger", "event"])
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def configure_logging() -> None:
    # Install a single stdout handler on the root logger; repeated calls are no-ops.
    global _configured
    if _configured:
        return
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    # Keep per-request client logs out of the default stream.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    _configured = True


def bind_request_context(**values: Any) -> None:
    # Fresh context per request so values never leak between requests on a reused task.
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
