"""
Structured Logging with Structlog.

Ledger events are logged by name (``points_credited``, ``balance_debited``,
``points_converted``...) with the user id and amounts as fields, so a
user's history can be followed across requests by filtering on
``user_id`` and ``request_id``.
"""

import logging
import sys
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from points_ledger.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service name and version to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def normalize_ledger_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render transaction ids and ledger enums as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, UUID):
            event_dict[key] = str(value)
        elif isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog on top of stdlib logging.

    JSON output looks like:
    {
        "event": "balance_debited",
        "level": "info",
        "timestamp": "2026-10-19T12:00:00.123456Z",
        "logger": "points_ledger.services.ledger",
        "service": "points-ledger-api",
        "version": "0.1.0",
        "request_id": "req-123",
        "user_id": "student-1",
        "currency": "points",
        "amount": 10,
        "balance": 5
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        normalize_ledger_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module, e.g. ``get_logger(__name__)``."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind fields to every ledger event logged inside the block.

    The HTTP middleware binds ``request_id`` per request:
        with log_context(request_id=request_id):
            logger.info("request_started", path="/v1/points/deduct")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
