"""
JSON-lines logging for ledger jobs.

Every line carries service/env/version, the bound `run_id` (one per
migration or report run) and an `event_type` such as
`ledger.migration.batch`. Extra fields passed through `log_event` are emitted
as top-level keys; Decimal values are written as exact strings.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional


_RUN_ID: ContextVar[Optional[str]] = ContextVar("ledger_run_id", default=None)

# Attributes every LogRecord has, plus the envelope keys we write ourselves.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"taskName", "message"}
_ENVELOPE_KEYS = frozenset({"service", "env", "version", "run_id", "event_type", "severity", "timestamp"})

_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _one_line(v: Any, limit: int) -> str:
    s = " ".join(("" if v is None else str(v)).splitlines()).strip()
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _severity(level: str | int | None) -> str:
    if isinstance(level, int):
        level = logging.getLevelName(level)
    s = _one_line(level or "INFO", 16).upper()
    s = _SEVERITY_ALIASES.get(s, s)
    return s if s in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"


def _encode(v: Any) -> Any:
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    return str(v)


def get_run_id() -> Optional[str]:
    return _RUN_ID.get()


@contextmanager
def bind_run_id(*, run_id: str | None = None) -> Iterator[str]:
    """Bind a run id for the duration of the block (a fresh uuid when not given)."""
    rid = _one_line(run_id, 128) or uuid.uuid4().hex
    token = _RUN_ID.set(rid)
    try:
        yield rid
    finally:
        _RUN_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str | None, env: str | None, version: str | None) -> None:
        super().__init__()
        self._envelope = {
            "service": _one_line(service or os.getenv("SERVICE_NAME") or "inventory-ledger", 128),
            "env": _one_line(env or os.getenv("ENV") or "unknown", 64),
            "version": _one_line(version or "unknown", 64),
        }

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": _severity(getattr(record, "severity", None) or record.levelno),
            **self._envelope,
            "run_id": getattr(record, "run_id", None) or get_run_id(),
            "event_type": _one_line(getattr(record, "event_type", None), 128) or "log",
            "message": _one_line(record.getMessage(), 4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in vars(record).items():
            if k in _RECORD_ATTRS or k in _ENVELOPE_KEYS or k.startswith("_"):
                continue
            payload[k] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_encode)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    level: str | int | None = None,
) -> None:
    """Send JSON lines to stdout. Replaces existing root handlers, so repeated calls are fine."""
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """
    Log a semantic event with a stable `event_type`.

    Field names must not collide with LogRecord attributes (`created`,
    `message`, `name`, ...); logging rejects those in `extra`.
    """
    logger.log(
        getattr(logging, _severity(severity)),
        message or event_type,
        extra={"event_type": _one_line(event_type, 128), **fields},
    )
