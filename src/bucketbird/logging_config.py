"""Log formatting for BucketBird.

Modules log through ``logging.getLogger(__name__)`` and attach request or
object context as ``extra`` fields (``bucket``, ``key``, ``operation``,
``request_id`` and the access log fields). Both formatters below surface
that context: as JSON properties in ``json`` mode, and as a trailing
``name=value`` list in ``text`` mode.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Context attributes copied from log records, in output order.
CONTEXT_FIELDS = (
    "request_id",
    "bucket",
    "key",
    "operation",
    "method",
    "path",
    "status",
    "duration_ms",
)

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _context(record: logging.LogRecord) -> dict:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable lines with the object context appended.

    The access log fields are already part of the request log message, so
    only ``request_id``, ``bucket``, ``key`` and ``operation`` are added.
    """

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in _context(record).items() if k in CONTEXT_FIELDS[:4]}
        if not context:
            return line
        suffix = " ".join(f"{name}={value}" for name, value in context.items())
        # Tracebacks stay on the lines after the message.
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Replace the root handlers with one stderr handler.

    Args:
        level: Log level name; unknown names fall back to INFO.
        fmt: ``json`` for structured lines, anything else for text.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ContextFormatter())
    root.addHandler(handler)

    # uvicorn's access log duplicates the request log middleware.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
