"""
Structured logging configuration.

Every module logs through structlog:

    logger = structlog.get_logger(__name__)
    logger.info("transaction_completed", reference=txn.reference)

Events are snake_case names with key/value fields, rendered as JSON lines
(LOG_JSON=true) or as colored console output for local development.
Request-scoped values (e.g. the user id) can be bound with
structlog.contextvars.bind_contextvars and show up on every log line.

Security note:
  Passwords and JWTs are never passed to a logger. Amounts, account
  numbers and transaction references are considered safe to log.
"""

import logging
import sys
from typing import Any

import structlog

from bank_ledger.config import settings


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp every log event with the application name and version."""
    event_dict["app_name"] = settings.APP_NAME
    event_dict["app_version"] = settings.APP_VERSION
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Safe to call more than once (e.g. on every app startup in tests):
    existing root handlers are replaced, not duplicated.
    """
    renderer: Any
    if settings.LOG_JSON:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # structlog already rendered the message; the handler just writes it out
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    # SQL echo is controlled by DEBUG on the engine, keep the rest quiet
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.LOG_LEVEL,
        json=settings.LOG_JSON,
    )
