"""
structlog setup for applications embedding the gateway.

Library modules only call ``structlog.get_logger(__name__)`` and pass event
fields as keywords; rendering is decided once by the host application:
JSON lines in production, aligned console output everywhere else.

Gateway calls bind ``operation_id`` and ``service_id`` as context
variables, so every event emitted while a call runs (retry, breaker,
fallback, usage) carries them without threading them through by hand.
"""

import logging
import sys
from typing import IO, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

APP_NAME = "execution-gateway"

# Loggers that are noisy at INFO when providers are called over HTTP
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def tag_app(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", APP_NAME)
    return event_dict


def build_processors(json_output: bool) -> list[Processor]:
    """Processors shared by structlog events and foreign stdlib records."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        tag_app,
    ]
    if json_output:
        processors += [structlog.processors.StackInfoRenderer(), structlog.processors.format_exc_info]
    return processors


def configure_logging(
    log_level: str = "INFO",
    environment: str = "development",
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """
    Route structlog through a single stdlib handler.

    Args:
        log_level: Level name; unknown names fall back to INFO
        environment: "production" renders JSON, anything else console text
        stream: Output stream (stdout by default)

    Returns:
        The installed root handler
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    json_output = environment.lower() == "production"
    shared = build_processors(json_output)

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.get_logger(__name__).debug(
        "Logging configured",
        level=logging.getLevelName(level),
        renderer="json" if json_output else "console",
    )
    return handler
