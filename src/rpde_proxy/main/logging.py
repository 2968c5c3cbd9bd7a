"""Logger factory for the workers and the CLI tools.

JSON lines (one object per record, carrying the transition context) when
``JSON_LOGS`` is on, rich console output otherwise.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from rpde_proxy.main.config import get_loglevel
from rpde_proxy.main.log_context import get_log_context


JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

THIRD_PARTY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "arq")


class ContextJSONFormatter(logging.Formatter):
    """Serialize a record with its feed context (feed, stage, queue) and extras."""

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in get_log_context().items():
            if value is not None:
                log.setdefault(key, value)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_") or value is None:
                continue
            log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        return json.dumps(log, default=str)


def _console_handler(level: int) -> logging.Handler:
    handler: logging.Handler
    if JSON_LOGS_ENABLED:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(ContextJSONFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, markup=False, show_path=True)
    handler.setLevel(level)
    return handler


# Driver libraries stay quiet unless we are debugging
for _name in THIRD_PARTY_LOGGERS:
    logging.getLogger(_name).setLevel(
        logging.INFO if get_loglevel() <= logging.DEBUG else logging.WARNING
    )


class SimpleLogger(logging.Logger):
    def __init__(self, name: str = "rpde_proxy", level: int = logging.WARNING):
        super().__init__(name, level)
        self.addHandler(_console_handler(level))


def get_logger(module_name: str) -> logging.Logger:
    # Detached from the logging manager, so every module gets its own handler
    return SimpleLogger(name=module_name, level=get_loglevel())
