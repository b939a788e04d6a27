"""
Structured logging for the ledger.

Call ``configure_logging`` once at startup, then take a module logger:

    logger = get_logger(__name__)
    logger.info("consumption_applied", batch_id=batch.id, amount=Decimal("12.5"))

Decimals, UUIDs, dates and enums are rendered as strings, so ledger code can
pass its own values straight into an event.
"""

import enum
import logging
import sys
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Literal, cast

import structlog
from structlog.types import EventDict, Processor

Renderer = Literal["json", "console"]

# Third-party loggers that write through the ledger's handler.
FOREIGN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "alembic")

_configured = False


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal | uuid.UUID):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    return value


def render_ledger_values(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """Turns ledger value types into JSON-safe strings."""
    return {key: _plain(value) for key, value in event_dict.items()}


def _service_stamp(service_name: str) -> Processor:
    def add_service(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    renderer: Renderer = "json",
) -> None:
    """
    Routes structlog and stdlib logging to one stdout handler.

    Only the first call takes effect. ``renderer="console"`` gives readable
    lines for local runs; everything else gets one JSON object per line.
    """
    global _configured
    if _configured:
        return

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _service_stamp(service_name),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.dict_tracebacks,
        render_ledger_values,
    ]
    if renderer == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in FOREIGN_LOGGERS:
        foreign = logging.getLogger(name)
        foreign.handlers = [handler]
        foreign.propagate = False

    _configured = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return cast(structlog.BoundLogger, structlog.get_logger(name))
