"""Audit trail for privacy-relevant actions.

Events are JSON lines appended to ``AUDIT_LOG_FILE`` and also emitted on the
``audit`` logger. Recorded: account and history deletion, ownership denials,
cancellations, rejected tokens and ciphertext that failed verification.
Metadata must carry ids and counts only; recipient-like keys are masked.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

from bulkmail.core.logger import scrub

_AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_FILE", "storage/audit.log")
_logger = logging.getLogger("audit")


def _append(line: str) -> None:
    directory = os.path.dirname(_AUDIT_LOG_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(_AUDIT_LOG_PATH, "a", encoding="utf-8") as fh:
        fh.write(line + "\n")


def log_audit_event(action: str, user_id: int | None = None, status: str = "success", **metadata: Any) -> None:
    """Record an audit event.

    Parameters:
        action: Dotted event key, e.g. ``account.deleted`` or ``job.cancelled``.
        user_id: The acting user, when known.
        status: ``success``, ``failure`` or ``denied``.
        **metadata: Ids, counts and reasons.
    """
    event = {"ts": int(time.time()), "action": action, "user_id": user_id, "status": status, **scrub(metadata)}
    line = json.dumps(event, separators=(",", ":"), default=str)
    try:
        _append(line)
    except OSError:
        # The logger line below still carries the event
        _logger.warning("Audit file %s not writable", _AUDIT_LOG_PATH)
    _logger.info(line)


def log_denied(action: str, user_id: int | None = None, reason: str | None = None, **extra: Any) -> None:
    log_audit_event(action, user_id=user_id, status="denied", reason=reason, **extra)


def log_failure(action: str, user_id: int | None = None, error: str | None = None, **extra: Any) -> None:
    log_audit_event(action, user_id=user_id, status="failure", error=error, **extra)
