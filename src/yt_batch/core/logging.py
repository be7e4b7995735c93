"""structlog setup shared by the worker and the HTTP server."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from yt_batch.core.config import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    """Route structlog through stdlib logging with console and optional file output."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                config.file,
                maxBytes=config.max_size * 1024 * 1024,
                backupCount=config.backup_count,
            )
        )

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
