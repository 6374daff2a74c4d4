"""Structured logging for the train log bot and its command line."""

import logging
import sys
from typing import Literal, TextIO

import structlog

from train_log.config.settings import FlatSettings, get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

# Client libraries that log every request at INFO
CHATTY_LOGGERS = (
    "httpx",
    "httpcore",
    "anthropic",
    "openai",
    "google_genai",
    "sqlalchemy.engine",
)


def configure_logging(
    settings: FlatSettings | None = None,
    level: LogLevel | None = None,
    format: Literal["json", "console"] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog through stdlib logging with a console or JSON renderer.

    Safe to call more than once; each call replaces the previous setup.

    Args:
        settings: Source of ``LOG_LEVEL`` and ``LOG_FORMAT``. Defaults to the
            cached settings.
        level: Overrides the configured level.
        format: Overrides the configured format.
        stream: Where log lines go. Defaults to stderr, leaving stdout to the
            command line's own output.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, level or settings.log_level)
    stream = stream or sys.stderr

    logging.basicConfig(format="%(message)s", stream=stream, level=log_level, force=True)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    if (format or settings.log_format) == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=stream.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def request_logger(name: str, request_id: str, **context: object) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to a single inbound request.

    Every line logged while handling an interaction carries its id, so the
    initial command, clarification round-trips and confirmations of one
    request chain can be followed in the output.

    Args:
        name: Logger name (typically __name__).
        request_id: Opaque id of the interaction being handled.
        **context: Extra key/value pairs to bind.
    """
    return structlog.get_logger(name).bind(request_id=request_id, **context)
