from __future__ import annotations

"""Process-wide logging configuration.

Every service writes one JSON object per line with a stable set of keys:
timestamp (UTC ISO8601), level, logger, service, environment, message.
Structured values passed via ``logger.info(msg, extra={...})`` are merged
into the object, exceptions add an ``error`` block.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from libs.core.settings import get_settings

# Attributes every LogRecord carries; anything else came from ``extra=``.
_RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

# Third-party loggers that are too chatty at INFO.
_NOISY_LOGGERS = ("aiokafka", "httpx", "httpcore", "telegram", "sqlalchemy.engine")


class _JsonFormatter(logging.Formatter):
    """One-line JSON log formatter with stable keys and UTC timestamps."""

    def __init__(self, service: str, environment: str) -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        base: Dict[str, Any] = {
            "timestamp": dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service,
            "environment": self.environment,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED or key in base:
                continue
            base[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            base["error"] = {
                "class": exc_type.__name__,
                "message": str(exc)[:500],
            }
        try:
            return json.dumps(base, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return json.dumps({k: repr(v) for k, v in base.items()}, ensure_ascii=False)


def setup_logging(service: Optional[str] = None) -> None:
    """Configure the root logger to output one-line JSON logs."""

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(
        _JsonFormatter(service or settings.service_name, settings.environment)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


__all__ = ["setup_logging"]
