"""
Structured Logging Configuration Module

One JSON object per line for loan, payment and reporting operations, or a
plain text line when ``log_format`` is "text".
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes set by log_action and copied into JSON output when present
CONTEXT_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON line"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    logger_name: str = "coop_banking",
    log_format: str = "json",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package logger

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        logger_name: Logger to configure; module loggers live beneath it
        log_format: "json" or "text"
        log_file: Write to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    formatter = JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT)
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "coop_banking") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a state-changing operation with who did what to which record

    ``extra`` is nested under its own key in JSON output.
    """
    levelno = logging.getLevelName(level.upper())
    if not logger.isEnabledFor(levelno):
        return

    context = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra or None
    }
    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)
    for name, value in context.items():
        if value is not None:
            setattr(record, name, value)
    logger.handle(record)
