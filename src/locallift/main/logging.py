import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from locallift.main.config import get_loglevel
from locallift.main.request_context import get_request_context

JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "sqlalchemy.dialects",
)


class ContextJSONFormatter(logging.Formatter):
    """One JSON object per line.

    Fixed fields come first, then the batch context of the running task
    (batch, workload, tenant), then whatever the call site passed in
    ``extra``. Keys with a None value are left out.
    """

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for source in (get_request_context(), extras):
            for key, value in source.items():
                if value is not None:
                    log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log["stack"] = record.stack_info

        return json.dumps(log, default=str)


def quiet_third_party_loggers(level: int) -> None:
    """Silence library loggers unless running at DEBUG. SQLAlchemy stays at WARNING either way."""
    library_level = logging.INFO if level <= logging.DEBUG else logging.CRITICAL
    for name in list(logging.root.manager.loggerDict):
        if not name.startswith("locallift"):
            logging.getLogger(name).setLevel(library_level)

    for name in _NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.WARNING)
        noisy.propagate = False


quiet_third_party_loggers(get_loglevel())


def _console_handler(level: int) -> logging.Handler:
    handler: logging.Handler
    if JSON_LOGS_ENABLED:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(ContextJSONFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, markup=True, show_path=True)
    handler.setLevel(level)
    return handler


class SimpleLogger(logging.Logger):
    """Standalone logger writing to the console, JSON lines in deployments and rich locally."""

    def __init__(self, name: str = "locallift", level: int = logging.WARNING):
        super().__init__(name, level)
        self.addHandler(_console_handler(level))


def get_logger(module_name: str):
    # If we don't add a handler manually one will be created for us
    return SimpleLogger(name=module_name, level=get_loglevel())
