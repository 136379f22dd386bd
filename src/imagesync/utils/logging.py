"""Logging configuration and utilities.

structlog builds every event; the standard library handlers decide where it
goes. Records from other libraries (aiohttp, APScheduler) pass through the
same renderers via ``foreign_pre_chain``.
"""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import List, Optional

import structlog
import colorlog
from colorlog.escape_codes import parse_colors
from structlog.typing import Processor


LOG_COLORS = {
    "debug": "cyan",
    "info": "green",
    "warning": "yellow",
    "error": "red",
    "critical": "red,bg_white",
}

# Handlers installed by the last setup_logging call, replaced on the next one
_installed_handlers: List[logging.Handler] = []


def _shared_processors() -> List[Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Set up logging configuration.

    Arguments left as None fall back to the ``logging`` settings group.
    Calling this again replaces the handlers the previous call installed.
    """
    from ..config.settings import get_settings

    settings = get_settings()

    level = getattr(logging, (log_level or settings.logging.level).upper())
    format_type = log_format or settings.logging.format
    file_path = log_file or settings.logging.file_path

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    _installed_handlers.append(setup_console_logging(level, format_type))
    if file_path:
        _installed_handlers.append(setup_file_logging(file_path, level))

    for handler in _installed_handlers:
        root.addHandler(handler)
    root.setLevel(level)


def setup_file_logging(file_path: str, level: int) -> logging.Handler:
    """Build a rotating file handler writing one JSON object per line."""
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=_shared_processors(),
    ))
    return file_handler


def setup_console_logging(level: int, format_type: str = "console") -> logging.Handler:
    """Build the stdout handler, colored by level unless ``format_type`` is json."""
    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if format_type == "json":
        renderers: List[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        level_styles = {name: parse_colors(colors) for name, colors in LOG_COLORS.items()}
        renderers = [structlog.dev.ConsoleRenderer(colors=True, level_styles=level_styles)]

    console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        foreign_pre_chain=_shared_processors(),
    ))
    return console_handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_async_execution_time(func):
    """Log how long an adapter call took, and its error if it raised."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        started = time.monotonic()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(
                "Remote call failed",
                call=func.__qualname__,
                elapsed=f"{time.monotonic() - started:.3f}s",
                error=str(e)
            )
            raise

        logger.debug(
            "Remote call finished",
            call=func.__qualname__,
            elapsed=f"{time.monotonic() - started:.3f}s"
        )
        return result

    return wrapper
