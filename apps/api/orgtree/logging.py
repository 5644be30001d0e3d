from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from orgtree.context import get_correlation_id
from orgtree.core.config import get_settings


_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__)
# Only these ``extra`` keys reach the JSON output.
_EMITTED_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "organization_id",
        "parent_id",
        "previous_parent_id",
        "organization_type",
        "organizations_count",
        "error_count",
        "outcome",
        "reason",
        "event_name",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


def _stamp_correlation_id(record: logging.LogRecord) -> None:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_correlation_id(record)
        return True


_base_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    # Records are stamped at creation so handlers added later (pytest's caplog) see the id too.
    record = _base_record_factory(*args, **kwargs)
    _stamp_correlation_id(record)
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _EMITTED_FIELDS and key not in _STANDARD_ATTRS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_orgtree_configured", False):
        return

    resolved = logging.getLevelName((level or get_settings().log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    root_logger._orgtree_configured = True  # type: ignore[attr-defined]
