"""
Logging setup.

JSON lines in production (or when LOG_JSON is set) so webhook traces can be
searched by gateway reference; plain text otherwise.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import settings

# Record attributes passed through `extra=` that belong in the JSON line
CONTEXT_FIELDS = ("reference", "transaction_id", "promoted_poll_id", "event")

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "celery.beat")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying payment context when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = str(value)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Replace root handlers with a single stdout handler."""
    if json_output is None:
        json_output = settings.log_json or settings.is_production

    root_logger = logging.getLogger()
    root_logger.setLevel((level or settings.log_level).upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
