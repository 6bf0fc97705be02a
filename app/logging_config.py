"""Logging setup for the app.* logger hierarchy."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from app.config import settings


_LOGGER_PREFIX = 'app'
_TEXT_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'

_STDLIB_KEYS: frozenset[str] = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None)).keys()) | {
    'message',
    'taskName',
}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    return str(obj)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are merged into the payload."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            'ts': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload['exc_type'] = type(exc).__name__
            payload['exc_message'] = str(exc)
            payload['traceback'] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


_configured = False
_lock = threading.Lock()


def configure_logging(*, level: str | None = None, handler: logging.Handler | None = None) -> None:
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel((level or settings.log_level).upper())
    root_logger.propagate = False

    h = handler or logging.StreamHandler(sys.stderr)
    h.setFormatter(JsonFormatter() if settings.log_json else logging.Formatter(_TEXT_FORMAT))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Testing only."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
