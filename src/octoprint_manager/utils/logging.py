"""Logging utilities for OctoPrint Manager."""

import logging
import sys

from pythonjsonlogger import jsonlogger

# Chatty third-party loggers that drown out lifecycle events at DEBUG
_NOISY_LOGGERS = ("urllib3", "docker.utils.config", "aiosqlite")


class ContextJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with the service name."""

    def add_fields(self, log_record, record, message_dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("service", "octoprint-manager")


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure root logging for the service.

    Lifecycle code logs with structured ``extra`` fields (identity, device,
    instance name); the JSON format keeps those as top-level keys while the
    text format drops them.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type (json or text)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if log_format.lower() == "json":
        formatter = ContextJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
            timestamp=True,
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name."""
    return logging.getLogger(name)
