from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel

from .context import get_log_context

# Extra fields can carry cell values or whole frames; keep lines bounded.
_MAX_VALUE_CHARS = 500


def _bounded(value: Any) -> Any:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, str) and len(value) > _MAX_VALUE_CHARS:
        return value[:_MAX_VALUE_CHARS] + "..."
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, event name, then
    correlation context, static fields and the record's ``extra_fields``."""

    def __init__(self, static_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts_iso_utc": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(self.static_fields)
        payload.update(get_log_context())

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update({key: _bounded(value) for key, value in extra_fields.items()})

        if record.exc_info:
            payload.update(self._exception_fields(record.exc_info))

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)

    @staticmethod
    def _exception_fields(exc_info) -> dict[str, str]:
        exc_type, exc_value, exc_tb = exc_info
        return {
            "exc_type": exc_type.__name__ if exc_type else "Exception",
            "exc_msg": str(exc_value) if exc_value else "",
            "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        }
