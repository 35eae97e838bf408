"""
Structured logging for registry and ledger operations.

Records may carry ``user_id``, ``action``, ``resource`` and ``extra``
attributes; the JSON formatter emits whichever are present.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


STRUCTURED_FIELDS = ("user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "escrow",
                  fmt: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        logger_name: Parent logger of every component ("escrow.*")
        fmt: "json" for structured lines, "text" for plain lines
        log_file: Append to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces earlier handlers
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "escrow") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a registry or ledger action with its structured context.

    Args:
        logger: Component logger
        level: "debug", "info", "warning" or "error"
        message: Human-readable summary
        user_id: Holder who performed the action
        action: Short action name, e.g. "contribute"
        resource: Affected record, e.g. "campaign:1"
        extra: Any further structured values
    """
    context = {
        name: value
        for name, value in zip(STRUCTURED_FIELDS, (user_id, action, resource, extra))
        if value
    }
    logger.log(logging.getLevelName(level.upper()), message, extra=context, stacklevel=2)
