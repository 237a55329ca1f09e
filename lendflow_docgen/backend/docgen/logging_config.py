# backend/docgen/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from .middleware.request_id import get_request_id

# record attributes copied into the JSON line when present
STRUCTURED_EXTRAS = (
    "org_id",
    "project_id",
    "project_module",
    "run_key",
    "doc_type",
    "version",
    "document_id",
    "status",
    "error_step",
    "elapsed_ms",
    "method",
    "path",
    "status_code",
    "latency_ms",
    "org_slug",
)

# third-party loggers that are noisy at INFO, with the env var that overrides each
_QUIET_LOGGERS = {
    "sqlalchemy.engine": "SQL_LOG_LEVEL",
    "httpx": "HTTPX_LOG_LEVEL",
    "celery": "CELERY_LOG_LEVEL",
}

_log_context: ContextVar[dict[str, Any]] = ContextVar("docgen_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Binds fields (project_id, run_key, ...) to every record logged inside the
    block, including from modules that never see the run. Explicit `extra=`
    values win over bound ones.
    """
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, request_id, bound run fields, extras, exc_info."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        payload.update(_log_context.get())
        for k in STRUCTURED_EXTRAS:
            v = getattr(record, k, None)
            if v is not None:
                payload[k] = v

        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    # replace, never stack: create_app() and uvicorn --reload both call this
    root.handlers[:] = [handler]
    root.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(level)
    for name, env_var in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel((os.getenv(env_var) or "WARNING").upper())
