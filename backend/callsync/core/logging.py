"""Logging setup shared by the API, the Celery worker and the CLI."""
import json
import logging
from datetime import datetime, timezone

from callsync.core.config import settings

EXTRA_FIELDS = ("account_id", "run_id", "kind", "page", "duration_ms", "record_count")


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        return json.dumps(entry, default=str)


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.log_json
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()
    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
