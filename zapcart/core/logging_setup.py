from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone

from zapcart.core.request_context import get_request_id, get_tenant_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_SENSITIVE_PATTERNS = [
    re.compile(r"(client-token\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(token\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(/token/)([^/\s\"]+)", re.IGNORECASE),
    re.compile(r"(secret\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
]

# Campos passados via extra= que viram chaves do JSON
_EXTRA_FIELDS = (
    "phone",
    "group_name",
    "message_id",
    "product_code",
    "cart_id",
    "order_id",
    "delay_seconds",
    "outcome",
    "job_id",
    "integration",
    "consecutive_failures",
    "endpoint",
    "method",
    "status_code",
    "duration_ms",
)


def mask_secrets(text: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": mask_secrets(record.getMessage()),
            "request_id": getattr(record, "request_id", None) or get_request_id(),
            "tenant_id": getattr(record, "tenant_id", None) or get_tenant_id(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in _EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = mask_secrets(self.formatException(record.exc_info))
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # o httpx loga a URL completa, que na Z-API carrega o token da instância
    logging.getLogger("httpx").setLevel(logging.WARNING)
