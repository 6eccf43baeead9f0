"""Root logger configuration shared by the CLI and the trigger entrypoint."""

from __future__ import annotations

import logging
import sys

import orjson

from geofence_notifier.config import LoggingConfig
from geofence_notifier.redactor import PushTokenRedactingFilter

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON (picked up by Cloud Logging)."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "severity": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def setup_logging(config: LoggingConfig, level: str | None = None) -> logging.Handler:
    """Configure the root logger with one stderr handler.

    Any handler installed by a previous call is replaced, so repeated calls
    in a warm process do not duplicate output.
    """
    root = logging.getLogger()
    effective = (level or config.level).upper()
    if effective == "WARN":
        effective = "WARNING"
    root.setLevel(getattr(logging, effective, logging.INFO))

    for existing in list(root.handlers):
        if getattr(existing, "_geofence_notifier", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if config.format == "json" else logging.Formatter(_TEXT_FORMAT))
    if config.redact_tokens:
        # Handler-level so records propagated from module loggers are covered
        handler.addFilter(PushTokenRedactingFilter())
    handler._geofence_notifier = True
    root.addHandler(handler)
    return handler
