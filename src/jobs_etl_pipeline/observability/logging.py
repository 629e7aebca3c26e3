"""Structured logging for pipeline runs.

Every line carries the service name and pipeline version; during a run
the orchestrator binds ``run_id``, the checkpoint ``scope`` and the
current ``stage`` through contextvars. An optional log file receives
the same events as JSON lines regardless of the console format.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path
    from typing import Any

    from jobs_etl_core.config.settings import Settings

# Clients that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "anthropic", "instructor")


class ServiceStamp:
    """Processor adding the service name and pipeline version to each event."""

    def __init__(self, service: str, pipeline_version: str) -> None:
        """Initialize with the values to stamp."""
        self._service = service
        self._version = pipeline_version

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", self._service)
        event_dict.setdefault("pipeline_version", self._version)
        return event_dict


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib records through the console and optional file handlers."""
    pre_chain: list[structlog.types.Processor] = [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        ServiceStamp(settings.otel_service_name, settings.pipeline_version),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    level = resolve_level(settings.log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    handlers: list[logging.Handler] = [
        _handler(logging.StreamHandler(), console_renderer, pre_chain)
    ]
    if settings.log_file is not None:
        handlers.append(_file_handler(settings.log_file, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _handler(
    handler: logging.Handler,
    renderer: structlog.types.Processor,
    pre_chain: list[structlog.types.Processor],
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def _file_handler(path: Path, pre_chain: list[structlog.types.Processor]) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return _handler(
        logging.FileHandler(path, encoding="utf-8"),
        structlog.processors.JSONRenderer(),
        pre_chain,
    )


def bind_run_context(run_id: str, scope: str | None = None) -> None:
    """Attach run_id (and the checkpoint scope) to every later log entry."""
    if scope is None:
        bind_contextvars(run_id=run_id)
    else:
        bind_contextvars(run_id=run_id, scope=scope)


def bind_stage(stage: str) -> None:
    """Attach the current pipeline stage to later log entries."""
    bind_contextvars(stage=stage)


def clear_run_context() -> None:
    """Clear all bound context variables."""
    clear_contextvars()


def resolve_level(level_name: str) -> int:
    """Level name to logging int; unknown names fall back to INFO."""
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO
