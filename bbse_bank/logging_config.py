"""
Logging setup for the bank and its credit ledger

One line per record, either as a JSON object (the default, for log shippers)
or as plain text for a terminal. Calls that act on a contract can attach the
calling address, the action name and the contract address as structured
fields through log_action().
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

# Optional attributes copied from a record into the JSON object
STRUCTURED_FIELDS = ("caller", "action", "contract", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = "bbse_bank",
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Point a logger at one stream handler

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"
        logger_name: Logger to configure; children inherit it
        stream: Where to write, stderr by default

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    # uvicorn installs root handlers of its own
    logger.propagate = False
    return logger


def get_logger(name: str = "bbse_bank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               caller: Optional[str] = None, action: Optional[str] = None,
               contract: Optional[str] = None, extra: Optional[dict] = None) -> None:
    """
    Log a contract call with structured fields

    Args:
        logger: Logger to write to
        level: Level name, e.g. "info" or "warning"
        message: Human-readable message
        caller: Address that made the call
        action: Operation name, e.g. "deposit" or "mint"
        contract: Address of the contract acted on
        extra: Any further JSON-serializable details
    """
    fields = {
        name: value
        for name, value in (("caller", caller), ("action", action),
                            ("contract", contract), ("extra", extra))
        if value
    }
    logger.log(logging.getLevelName(level.upper()), message, extra=fields)
