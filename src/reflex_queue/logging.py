"""Structured logging for the Reflex work queue.

Queue events are emitted through structlog and rendered by stdlib handlers:
one on stdout and, optionally, a size-rotated JSON file.  Calling
:func:`setup_logging` again replaces the handlers it installed earlier, so
workers and tests can reconfigure without duplicating output.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from structlog.typing import Processor

from reflex_queue.config import Settings, get_settings

# Libraries whose INFO chatter would drown queue events
_QUIET_LOGGERS = ("redis", "asyncio")

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]

_installed: list[logging.Handler] = []


def _formatter(renderer: Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer]
    )


def _console_handler(settings: Settings, level: int) -> logging.Handler:
    renderer: Processor
    if settings.is_development:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_formatter(renderer))
    return handler


def _file_handler(settings: Settings, level: int) -> logging.Handler | None:
    """Build the rotating JSON file handler, or ``None`` if the path is unusable."""
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Fall back to console-only logging
        print(f"Warning: file logging disabled: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def setup_logging(settings: Settings | None = None) -> None:
    """Route structlog events to stdout and, when enabled, a rotating file."""
    settings = settings or get_settings()
    level = logging.getLevelNamesMapping().get(settings.log_level, logging.INFO)

    root = logging.getLogger()
    while _installed:
        old = _installed.pop()
        root.removeHandler(old)
        old.close()

    _installed.append(_console_handler(settings, level))
    if settings.log_to_file:
        file_handler = _file_handler(settings, level)
        if file_handler is not None:
            _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
