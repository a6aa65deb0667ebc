"""
Structured logging for the monitoring engine.

Components log snake_case events through structlog with a bound
``component`` field. ``setup_logging`` routes them, and any plain stdlib
records, to a rotating JSONL file and to stderr. Stdout is left to the
console alert channel.
"""

from __future__ import annotations

import logging
import os
import socket
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from quick_watch.config import LoggingConfig, get_config

if TYPE_CHECKING:
    from structlog.types import Processor

DEFAULT_LOG_FILE = "quick-watch.jsonl"
SERVICE_NAME = "quick-watch"


def _add_service_info(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict["service"] = SERVICE_NAME
    event_dict["hostname"] = socket.gethostname()
    event_dict["pid"] = os.getpid()
    return event_dict


def _format_exception(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Turn an ``exception`` value into a type/message pair."""
    exc = event_dict.pop("exception", None)
    if exc:
        event_dict["exception"] = {"type": type(exc).__name__, "message": str(exc)}
    return event_dict


def _pre_chain(*extra: Processor) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        *extra,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(pre_chain: list[Processor], renderer: Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def _file_handler(settings: LoggingConfig) -> RotatingFileHandler:
    path = Path(settings.dir) / (settings.file or DEFAULT_LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )


def setup_logging(
    settings: LoggingConfig | None = None,
    enable_console: bool = True,
    enable_file: bool = True,
) -> None:
    """
    Configure structlog and the root logger.

    Args:
        settings: Logging section of the configuration (defaults to the
            loaded configuration's).
        enable_console: Write to stderr as JSON or plain text.
        enable_file: Write JSONL to ``<dir>/<file>`` with size rotation.
    """
    settings = settings or get_config().logging
    log_level = getattr(logging, settings.level.upper(), logging.INFO)
    file_chain = _pre_chain(_add_service_info, _format_exception)

    structlog.configure(
        processors=[*file_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    if enable_file:
        file_handler = _file_handler(settings)
        file_handler.setFormatter(_formatter(file_chain, structlog.processors.JSONRenderer()))
        handlers.append(file_handler)

    if enable_console:
        if settings.format.lower() == "json":
            renderer: Processor = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(
                colors=False, exception_formatter=structlog.dev.plain_traceback
            )
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_formatter(_pre_chain(), renderer))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind fields to every log entry emitted inside the block.

    Example:
        with with_context(request_path="/api/trigger/deploy"):
            logger.info("trigger_received")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
