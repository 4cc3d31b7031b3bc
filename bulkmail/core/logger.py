"""Process-wide logging setup.

Plain ``asctime | level | name | message`` lines locally, one JSON object per
line in production. Extra fields that could carry recipient data are masked
before they reach either format.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Any

from bulkmail.core.config import settings

_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

# Never emitted verbatim, whatever module passes them as ``extra``
SENSITIVE_FIELDS = frozenset({"recipient", "subject", "email", "smtp_identity", "smtp_password", "ip_address"})
REDACTED = "[redacted]"


def scrub(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: (REDACTED if key in SENSITIVE_FIELDS else value) for key, value in fields.items()}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "app": settings.APP_NAME,
            "env": settings.ENV,
        }
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _STANDARD_ATTRS
        }
        if extra:
            payload["extra"] = scrub(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def init_logging(level: int | None = None) -> None:
    """Install the stdout handler once; later calls are no-ops."""
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root.setLevel(level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.addHandler(handler)
    # SQL echo would print ciphertext and hashes at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
