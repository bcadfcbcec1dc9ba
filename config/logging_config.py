"""
Logging setup for the billing service.

LOG_LEVEL picks the level (default INFO). LOG_JSON=1 switches the stdout
handler to one JSON object per line; request fields passed through
`extra=` (CONTEXT_FIELDS) become top-level keys there.

Log Stripe object ids (cus_, sub_, in_) and event types only. Never
emails, bearer tokens or raw webhook bodies.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

CONTEXT_FIELDS = ("request_id", "method", "path", "status", "duration_ms")

QUIET_LOGGERS = ("uvicorn.access", "httpx", "stripe")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with any CONTEXT_FIELDS set on it."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def configure_logging(level: Optional[str] = None, use_json: Optional[bool] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, level_name, logging.INFO)
    if use_json is None:
        use_json = _env_flag("LOG_JSON")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    # replace rather than append so uvicorn --reload does not double every line
    root.handlers[:] = [handler]
    root.setLevel(resolved)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
