"""JSON logging setup."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from fixit.core.config import get_settings
from fixit.middleware.request_id import get_request_id

STRUCTURED_EXTRAS = ("user_id", "property_id", "request_id_ref", "schedule_id", "job_id")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, request_id, exc_info."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key in STRUCTURED_EXTRAS:
            if hasattr(record, key):
                payload[key] = str(getattr(record, key))

        return json.dumps(payload, ensure_ascii=False)


def configure_logging() -> None:
    settings = get_settings()
    level = settings.log_level.upper()

    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers (uvicorn reload installs its own)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(settings.sql_log_level.upper())
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
