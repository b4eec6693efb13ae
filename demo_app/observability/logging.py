from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog


_CONFIGURED = False

# Loggers that install their own handlers or would otherwise print plain text.
_THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "opentelemetry")


def _add_service(service_name: str | None) -> Any:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if service_name:
            event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def _pre_chain(service_name: str | None) -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service(service_name),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        # One JSON object per line: {"message": ..., "level": ..., "timestamp": ...}
        structlog.processors.EventRenamer("message"),
    ]


def build_json_handler(stream: TextIO | None = None, service_name: str | None = None) -> logging.Handler:
    """Stdlib handler rendering structlog and plain stdlib records as JSON lines."""

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=_pre_chain(service_name),
    )
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: int | str = logging.INFO, service_name: str | None = None) -> None:
    """Route structlog and stdlib logging to stdout as JSON.

    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    structlog.configure(
        processors=[
            *_pre_chain(service_name),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = build_json_handler(service_name=service_name)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _THIRD_PARTY_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True
