"""
Log setup for dblock: plain text or one JSON object per line, on stderr.

Lock operations pass the key they act on as ``extra={"lock_key": ...}``;
both formats show it.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(lock_suffix)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# client libraries that would otherwise drown out lock messages
QUIET_LOGGERS = ("redis", "sqlalchemy.engine")


class LockKeyFilter(logging.Filter):
    """Sets ``lock_suffix`` so the text format can show the key"""

    def filter(self, record: logging.LogRecord) -> bool:
        key = getattr(record, "lock_key", None)
        record.lock_suffix = f" [{key}]" if key else ""
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, tagged with the node id."""

    def __init__(self, node_id: str = "unknown", **kwargs):
        super().__init__(**kwargs)
        self.node_id = node_id

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "node_id": self.node_id,
            "message": record.getMessage(),
        }
        lock_key = getattr(record, "lock_key", None)
        if lock_key is not None:
            entry["lock_key"] = lock_key
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    format_type: str = "text",
    node_id: str = "unknown",
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Replace the root handlers with a single stream handler.

    Output goes to stderr unless ``stream`` is given, so command results
    printed on stdout stay parseable.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(LockKeyFilter())
    if format_type.lower() == "json":
        handler.setFormatter(JsonFormatter(node_id=node_id))
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
