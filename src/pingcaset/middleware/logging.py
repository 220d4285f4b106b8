"""Logging setup: structlog for request logs, stdlib loggers routed through it.

Service modules log with ``logging.getLogger(__name__)``; the formatter below
gives those records the same renderer and request context (request_id,
user_id) as structlog's own events.
"""

import logging

import structlog

from pingcaset.config import Settings

# Chatty at INFO; only surfaced when debugging.
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "arq.worker")
HANDLER_NAME = "pingcaset"


def _shared_processors(settings: Settings) -> list[structlog.types.Processor]:
    def _add_service(_logger: object, _method: str, event_dict: dict) -> dict:  # type: ignore[type-arg]
        event_dict.setdefault("service", "pingcaset-api")
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service,
    ]


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the root logger for JSON or console output."""
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console" or settings.debug
        else structlog.processors.JSONRenderer()
    )
    shared = _shared_processors(settings)

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
    ))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)
