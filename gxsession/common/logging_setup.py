"""
Structured Logging Setup

Consistent logging configuration for the session manager and service.
Uses JSON format for structured logs unless GXSESSION_LOG_FORMAT says otherwise.
"""

import logging
import sys
import os
from datetime import datetime, timezone
import json

# LogRecord attributes that are not copied into the JSON payload
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a component.

    Args:
        service_name: Name of the component (e.g., "session.pool")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"gxsession.{service_name}")
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the component

    Returns:
        Logger adapter with service name in all logs
    """
    log_level = os.environ.get("GXSESSION_LOG_LEVEL", "INFO")
    json_format = os.environ.get("GXSESSION_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def set_log_level(log_level: str) -> None:
    """Change the level of every gxsession logger already created"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    for name, logger in logging.root.manager.loggerDict.items():
        if not name.startswith("gxsession.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            handler.setLevel(numeric_level)


def log_batch_read(
    logger: logging.Logger,
    client_key: str,
    identity: str,
    kind: str,
    registry_count: int,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log the outcome of one info or reading batch"""
    if success:
        logger.debug(
            f"Read {registry_count} {kind} registries for {identity} on {client_key}",
            extra={"client_key": client_key, "identity": identity, "kind": kind},
        )
    else:
        logger.error(
            f"Failed reading {kind} registries for {identity} on {client_key}: {error}",
            extra={"client_key": client_key, "identity": identity, "kind": kind},
        )
