from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="-")


def set_correlation_id(value: Optional[str] = None) -> str:
    """Set a correlation ID (usually a flow id) for the current context and return it."""
    cid = value or str(uuid.uuid4())
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str:
    return _correlation_id.get()


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()
        return True


def get_logger(name: str = "flowpilot", level: int = logging.INFO) -> logging.Logger:
    """Return a logger configured with a correlation-id filter and a single stream handler."""
    logger = logging.getLogger(name)

    # Calling twice must not stack handlers.
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - cid=%(correlation_id)s - %(message)s"
            )
        )
        handler.addFilter(CorrelationIdFilter())
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
