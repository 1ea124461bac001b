"""
Log formatting for the ledger.

Both formatters add the fields bound by RequestContext and any ``extra``
passed at the call site, e.g. the warning logged for a failed side effect:

    logger.warning("Best-effort write failed", extra={"side_effect": "opportunity.fill"})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .context import current_context

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields overlaid with the record's own ``extra`` fields."""
    fields = current_context()
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, then fields."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [req] message key=value ...`` for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        fields = record_fields(record)
        request_id = fields.pop("request_id", None)
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<7} {record.name}"
        if request_id:
            line += f" [{request_id[-8:]}]"
        line += f" {record.getMessage()}"
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """
    Route all logging to stderr through one of the formatters.

    ``json_format=None`` picks JSON when stderr is not a terminal.
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else HumanFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
