"""Structured logging for the payments service.

Everything goes through structlog, including third-party stdlib loggers
(uvicorn, SQLAlchemy) via ``ProcessorFormatter``. Each entry carries the
service name and API version plus the ``req_...`` id of the HTTP call. While
a payment is processed, ``payment_log_context`` adds the payment identifiers
to every entry, including those logged by the idempotency store.
"""

import logging
import logging.config
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "pilgrim-payments"

# Third-party loggers that are too chatty at the root level
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncpg")


def add_request_id(logger, method, event_dict):
    rid = correlation_id.get(None)
    if rid:
        event_dict["request_id"] = rid
    return event_dict


def service_info(api_version: str | None):
    """Processor stamping the service name and API version onto each entry."""

    def _add(logger, method, event_dict):
        event_dict.setdefault("service", SERVICE_NAME)
        if api_version:
            event_dict.setdefault("api_version", api_version)
        return event_dict

    return _add


@contextmanager
def payment_log_context(idempotency_key: str, booking_id: str, user_id: str) -> Iterator[None]:
    """Bind the payment being processed to every log entry in this task."""
    with structlog.contextvars.bound_contextvars(
        idempotency_key=idempotency_key,
        booking_id=booking_id,
        user_id=user_id,
    ):
        yield


def configure_structlog(log_level: str = "INFO", json_logs: bool = True, api_version: str | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Call this BEFORE any other app imports (structlog caches the processor
    chain on first use).

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: True for JSON output (production), False for ConsoleRenderer (dev)
        api_version: Stamped on every entry when given
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_id,
        service_info(api_version),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
