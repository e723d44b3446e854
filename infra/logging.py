"""
Policy Status — Structured JSON Logging

Modules log through ``get_logger("<area>")``, which hangs every logger
off the ``policy_status`` namespace. ``configure_logging`` puts one
JSON-lines handler on that namespace. Each line names the root policy
being worked on, so a single reconcile can be followed across the
resolver, the aggregator and the worker.

Usage:
    from infra.logging import configure_logging, get_logger, log_fields

    configure_logging(level="INFO")
    log = get_logger("reconciler")
    log.info("Updating the root policy status", extra=log_fields(key))
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "policy_status"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields built by ``log_fields`` sit next to the fixed ones. A record
    carrying exception info gets ``error`` and ``errorType`` unless the
    caller already supplied an ``error`` field.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "policy_fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry.setdefault("error", str(record.exc_info[1]))
            entry["errorType"] = record.exc_info[0].__name__

        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> logging.Logger:
    """
    Send everything under ``policy_status`` to ``stream`` (stderr by
    default) as JSON lines. Unknown level names fall back to INFO.
    Calling it again replaces the previous handler.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(area: str = "") -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{area}" if area else ROOT_LOGGER)


def log_fields(obj: Any = None, **fields: Any) -> dict[str, Any]:
    """
    Build the ``extra`` mapping for a log call.

    ``obj`` is anything with ``namespace`` and ``name`` (an ObjectKey or
    a manifest) and becomes the ``namespace``/``name`` pair of the entry.
    Fields left as None are dropped.
    """
    out: dict[str, Any] = {}
    if obj is not None:
        out["namespace"] = obj.namespace
        out["name"] = obj.name
    out.update((k, v) for k, v in fields.items() if v is not None)
    return {"policy_fields": out}
