from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_EVENT_FIELDS = ("invoice_number", "stage", "status", "latency_ms", "outcome", "error_code")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _EVENT_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if root.handlers:
        for handler in root.handlers:
            handler.setFormatter(JsonFormatter())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)


def log_invoice_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    stage: str,
    invoice_number: str | None = None,
    status: str | None = None,
    latency_ms: int | None = None,
    outcome: str | None = None,
    error_code: str | None = None,
) -> None:
    extra: dict[str, Any] = {"stage": stage}
    if invoice_number:
        extra["invoice_number"] = invoice_number
    if status is not None:
        extra["status"] = status
    if latency_ms is not None:
        extra["latency_ms"] = latency_ms
    if outcome is not None:
        extra["outcome"] = outcome
    if error_code is not None:
        extra["error_code"] = error_code
    logger.log(level, message, extra=extra)
