"""
Logging setup.

Events are structured key/value records rendered by structlog. Records
from the standard library (and from libraries that log through it) go
through the same renderer, so a log file never mixes two formats.

Loggers can carry context; the archive binds its root so that every
event it emits says which archive it came from:

    log = get_logger(__name__, root="/data/bufkit")
    log.info("Archived file", file_name=name)
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from bufkit_data.core.config import LoggingConfig


# Shared by structlog events and foreign stdlib records
_PRE_CHAIN: list[Any] = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer(json_format: bool, colors: bool) -> Any:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=colors)


def _handler(handler: logging.Handler, level: int, json_format: bool, colors: bool) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_format, colors),
            ],
        )
    )
    return handler


def setup_logging(config: "LoggingConfig | None" = None, verbose: bool = False) -> None:
    """Configure logging from the logging settings.

    Args:
        config: Logging settings; defaults when omitted
        verbose: Force DEBUG regardless of the configured level
    """
    if config is None:
        from bufkit_data.core.config import LoggingConfig

        config = LoggingConfig()

    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if config.log_to_console:
        handlers.append(
            _handler(logging.StreamHandler(sys.stderr), level, config.json_format, sys.stderr.isatty())
        )
    if config.log_to_file and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _handler(logging.FileHandler(config.log_dir / config.log_file), level, config.json_format, False)
        )
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            *_PRE_CHAIN,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally with context bound into every event.

    Args:
        name: Logger name (typically __name__)
        **context: Key/value pairs added to each event
    """
    logger = structlog.get_logger(name)
    if context:
        return logger.bind(**context)
    return logger
