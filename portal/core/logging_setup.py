from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone

from portal.core.request_context import current_request_context

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_SECRET_PATTERN = re.compile(
    r"(authorization\s*[:=]\s*bearer\s+|(?:token|pass(?:word)?|secret|portal_session)\s*[:=]\s*)([^\s\",;}]+)",
    re.IGNORECASE,
)

CONTEXT_FIELDS = ("request_id", "user_id", "client_ip")
REQUEST_FIELDS = ("endpoint", "method", "status_code", "duration_ms")


def mask_secrets(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1***", text)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, merged with the current request context."""

    def format(self, record: logging.LogRecord) -> str:
        context = current_request_context()
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": mask_secrets(record.getMessage()),
        }
        for name in CONTEXT_FIELDS:
            payload[name] = getattr(record, name, None) or context.get(name)
        for name in REQUEST_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = mask_secrets(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
