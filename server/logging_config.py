"""
Structured logging configuration for the Busfahrer server.

Provides:
- JSONFormatter for production (one JSON object per line)
- Colored human-readable formatter for development
- Context variables carrying connection_id, session_code and player_id
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

# Context variables for per-connection data
connection_id_var: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)
session_code_var: ContextVar[Optional[str]] = ContextVar("session_code", default=None)
player_id_var: ContextVar[Optional[str]] = ContextVar("player_id", default=None)

CONTEXT_FIELDS = ("connection_id", "session_code", "player_id")
_CONTEXT_VARS = {
    "connection_id": connection_id_var,
    "session_code": session_code_var,
    "player_id": player_id_var,
}


def _context_value(record: logging.LogRecord, name: str) -> Optional[str]:
    """Explicit extra= fields win over the ambient context."""
    return getattr(record, name, None) or _CONTEXT_VARS[name].get()


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = _context_value(record, name)
            if value:
                log_data[name] = value

        # Add source location for errors
        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Example:
        12:01:33.120 INFO     session [session=QXKPT, player=alice] - alice joined
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        context_parts = []
        connection_id = _context_value(record, "connection_id")
        if connection_id:
            context_parts.append(f"conn={connection_id[:8]}")
        session_code = _context_value(record, "session_code")
        if session_code:
            context_parts.append(f"session={session_code}")
        player_id = _context_value(record, "player_id")
        if player_id:
            context_parts.append(f"player={player_id}")
        context = f" [{', '.join(context_parts)}]" if context_parts else ""

        output = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{context} - {record.getMessage()}"
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: "production" logs JSON, anything else is human-readable.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if environment == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, environment={environment}")


@contextmanager
def log_context(**values: Optional[str]) -> Iterator[None]:
    """
    Bind context fields (connection_id, session_code, player_id) for a block.

    Usage:
        with log_context(session_code="QXKPT", player_id="alice"):
            logger.info("Action applied")
    """
    tokens = []
    for name, value in values.items():
        if name not in _CONTEXT_VARS:
            raise ValueError(f"Unknown log context field: {name}")
        tokens.append((_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that attaches fixed context to every record.

    Usage:
        logger = get_logger(__name__).with_context(session_code="QXKPT")
        logger.info("Game started")
    """

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        super().__init__(logger, extra or {})

    def with_context(self, **kwargs) -> "ContextLogger":
        return ContextLogger(self.logger, {**self.extra, **kwargs})

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger (typically for __name__)."""
    return ContextLogger(logging.getLogger(name))
